"""Main FastAPI application for the transport tracking dashboard."""

import sys
import asyncio
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from telegram import Update
from loguru import logger

from .config import settings
from .llm.prompts import FALLBACK_INSIGHT
from .models import Material, MasterData
from .schemas import (
    FactoryBalanceIn,
    LoginRequest,
    MaterialRequest,
    MasterItemsIn,
    RecordIn,
    ReleaseIn,
    StatusRequest,
    UserIn,
)
from .storage import LocalCache, RemoteClient
from .tracking import (
    DashboardStore,
    FormValidationError,
    NotFoundError,
    PermissionDeniedError,
    SyncLoop,
)
from .tracking import forms, reports
from .tracking.store import ADMIN_ONLY, MATERIAL_REQUIRED


# Configure logging
logger.remove()
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level=settings.log_level
)

ALLOWED_UPDATES = ["message", "edited_message", "callback_query"]


def get_store(request: Request) -> DashboardStore:
    return request.app.state.store


def get_sync_loop(request: Request) -> SyncLoop:
    return request.app.state.sync_loop


def require_material(store: DashboardStore) -> Material:
    if store.material is None:
        raise PermissionDeniedError(MATERIAL_REQUIRED)
    return store.material


def build_store() -> DashboardStore:
    """Store wired to the configured endpoint and cache directory."""
    cache = LocalCache()
    return DashboardStore(RemoteClient(cache=cache), cache=cache)


def build_gemini_client():
    """Gemini client when a GCP project is configured, else None."""
    if not settings.insights_enabled:
        logger.info("GCP_PROJECT_ID not set - AI insights disabled")
        return None

    from .llm import GeminiClient
    try:
        return GeminiClient()
    except Exception as e:
        logger.warning(f"AI insights disabled: {e}")
        return None


async def start_telegram(app: FastAPI) -> None:
    from .messaging.telegram_handler import TelegramHandler

    telegram_handler = TelegramHandler(
        app.state.store, app.state.gemini_client, app.state.sync_loop
    )
    telegram_app = telegram_handler.create_application()

    await telegram_app.initialize()
    await telegram_app.bot.initialize()

    # Set webhook if in production
    if settings.is_production and settings.webhook_url:
        webhook_url = f"{settings.webhook_url}/webhook"
        logger.info(f"Setting webhook to: {webhook_url}")

        await telegram_app.bot.set_webhook(
            url=webhook_url,
            allowed_updates=ALLOWED_UPDATES
        )

        webhook_info = await telegram_app.bot.get_webhook_info()
        logger.info(f"Webhook info: {webhook_info}")
    else:
        logger.info("Development mode - webhook not set")

    app.state.telegram_app = telegram_app
    app.state.telegram_handler = telegram_handler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    logger.info("🚀 Starting Transport Tracker")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")

    owns_store = app.state.store is None
    if owns_store:
        app.state.store = build_store()
    if app.state.sync_loop is None:
        app.state.sync_loop = SyncLoop(app.state.store)
    if app.state.gemini_client is None and app.state.enable_integrations:
        app.state.gemini_client = build_gemini_client()

    store, sync_loop = app.state.store, app.state.sync_loop

    await sync_loop.refresh()
    if store.current_user is not None:
        sync_loop.start()

    if app.state.enable_integrations and settings.telegram_bot_token:
        await start_telegram(app)
    else:
        logger.info("Telegram bot disabled")

    logger.info("✅ Dashboard initialized successfully")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await sync_loop.stop()
    if app.state.telegram_app is not None:
        await app.state.telegram_app.shutdown()
    if owns_store:
        await asyncio.to_thread(store.close)
    logger.info("Shutdown complete")


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Transport Tracker",
        "status": "running",
        "version": "1.0.0"
    }


@router.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run."""
    return {
        "status": "healthy",
        "environment": settings.environment
    }


# Session

@router.post("/session/login")
async def login(
    body: LoginRequest,
    store: DashboardStore = Depends(get_store),
    sync_loop: SyncLoop = Depends(get_sync_loop),
):
    user = store.login(body.pin)
    sync_loop.start()
    return session_payload(store, user)


@router.post("/session/logout")
async def logout(
    request: Request,
    store: DashboardStore = Depends(get_store),
    sync_loop: SyncLoop = Depends(get_sync_loop),
):
    store.logout()
    # Bot chats keep their own sessions and still need fresh data
    if request.app.state.telegram_app is None:
        await sync_loop.stop()
    return {"ok": True}


def session_payload(store: DashboardStore, user=None) -> dict:
    user = user or store.current_user
    if user is None:
        return {"user": None, "material": None, "allowed_materials": []}
    return {
        "user": {"name": user.name, "role": user.role.value},
        "material": store.material.value if store.material else None,
        "allowed_materials": [m.value for m in user.allowed()],
    }


@router.get("/session")
async def get_session(store: DashboardStore = Depends(get_store)):
    return session_payload(store)


@router.post("/session/material")
async def select_material(body: MaterialRequest, store: DashboardStore = Depends(get_store)):
    store.select_material(body.material)
    return session_payload(store)


# Sync

@router.get("/status")
async def get_status(
    store: DashboardStore = Depends(get_store),
    sync_loop: SyncLoop = Depends(get_sync_loop),
):
    return {
        "connection": store.connection_status.value,
        "last_synced_at": store.last_synced_at.isoformat() if store.last_synced_at else None,
        "countdown": sync_loop.countdown,
        "fetching": sync_loop.fetching,
        "auto_refresh": sync_loop.running,
        "notifications": [n.to_dict() for n in store.drain_notifications()],
    }


@router.post("/sync")
async def sync_now(sync_loop: SyncLoop = Depends(get_sync_loop)):
    """Manual refresh; skipped while another fetch is in flight."""
    result = await sync_loop.refresh()
    if result is None:
        return {"skipped": True}
    return {"skipped": False, "degraded": result.degraded}


# Balances and reports

@router.get("/balances/releases")
async def release_balances(only_open: bool = False, store: DashboardStore = Depends(get_store)):
    require_material(store)
    return [b.to_dict() for b in store.release_balances(only_open=only_open)]


@router.get("/balances/sites")
async def site_balances(store: DashboardStore = Depends(get_store)):
    require_material(store)
    return [b.to_dict() for b in store.site_balances()]


@router.get("/balances/summary")
async def summary(store: DashboardStore = Depends(get_store)):
    require_material(store)
    return store.stats()


@router.get("/reports/periodic")
async def periodic_report(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    store: DashboardStore = Depends(get_store),
):
    require_material(store)
    report = store.periodic_report(date_from, date_to)
    payload = report.to_dict()
    payload["records"] = [r.model_dump(mode="json") for r in report.records]
    return payload


# Records

@router.get("/records")
async def list_records(
    search: str = "",
    status: Optional[str] = None,
    site: Optional[str] = None,
    store: DashboardStore = Depends(get_store),
):
    require_material(store)
    records = store.filtered_records()
    matched = reports.search_records(records, search, status, site)
    return {
        "records": [r.model_dump(mode="json") for r in matched],
        "stats": reports.record_stats(matched),
        "sites": reports.unique_sites(records),
    }


@router.post("/records", status_code=201)
async def create_record(body: RecordIn, store: DashboardStore = Depends(get_store)):
    record = store.add_record(body.to_form(require_material(store)))
    return record.model_dump(mode="json")


@router.put("/records/{auto_id}")
async def update_record(auto_id: str, body: RecordIn, store: DashboardStore = Depends(get_store)):
    record = store.update_record(auto_id, body.to_form(require_material(store)))
    return record.model_dump(mode="json")


@router.patch("/records/{auto_id}/status")
async def change_status(auto_id: str, body: StatusRequest, store: DashboardStore = Depends(get_store)):
    record = store.change_status(auto_id, body.status)
    return record.model_dump(mode="json")


@router.delete("/records/{auto_id}")
async def delete_record(auto_id: str, store: DashboardStore = Depends(get_store)):
    store.delete_record(auto_id)
    return {"ok": True}


# Releases

@router.get("/releases")
async def list_releases(store: DashboardStore = Depends(get_store)):
    require_material(store)
    return [r.model_dump(mode="json") for r in store.filtered_releases()]


@router.post("/releases", status_code=201)
async def create_releases(body: ReleaseIn, store: DashboardStore = Depends(get_store)):
    releases = store.add_releases(body.to_form())
    return [r.model_dump(mode="json") for r in releases]


@router.put("/releases/{release_id}")
async def update_release(release_id: str, body: ReleaseIn, store: DashboardStore = Depends(get_store)):
    release = store.update_release(release_id, body.to_form())
    return release.model_dump(mode="json")


@router.delete("/releases/{release_id}")
async def delete_release(release_id: str, store: DashboardStore = Depends(get_store)):
    store.delete_release(release_id)
    return {"ok": True}


@router.put("/factory-balances")
async def update_factory_balance(body: FactoryBalanceIn, store: DashboardStore = Depends(get_store)):
    balance = store.update_factory_balance(
        body.site_name,
        body.opening_balance,
        body.manual_consumption,
        body.goods_type,
    )
    return balance.model_dump(mode="json")


# Master data

def master_payload(store: DashboardStore) -> dict:
    user = store.current_user
    exclude = None if user is not None and user.is_admin else {"users"}
    return store.master_data.model_dump(mode="json", exclude=exclude)


def require_admin(store: DashboardStore) -> MasterData:
    user = store.current_user
    if user is None or not user.is_admin:
        raise PermissionDeniedError(ADMIN_ONLY)
    return store.master_data


@router.get("/master-data")
async def get_master_data(store: DashboardStore = Depends(get_store)):
    return master_payload(store)


@router.post("/master-data/users", status_code=201)
async def add_user(body: UserIn, store: DashboardStore = Depends(get_store)):
    store.save_master_data(forms.add_user(require_admin(store), body.to_user()))
    return master_payload(store)


@router.delete("/master-data/users/{pin}")
async def remove_user(pin: str, store: DashboardStore = Depends(get_store)):
    store.save_master_data(forms.remove_user(require_admin(store), pin))
    return master_payload(store)


@router.post("/master-data/{category}")
async def add_master_items(category: str, body: MasterItemsIn, store: DashboardStore = Depends(get_store)):
    store.save_master_data(forms.add_master_items(require_admin(store), category, body.raw))
    return master_payload(store)


@router.delete("/master-data/{category}/{item}")
async def remove_master_item(category: str, item: str, store: DashboardStore = Depends(get_store)):
    store.save_master_data(forms.remove_master_item(require_admin(store), category, item))
    return master_payload(store)


# Form helpers

@router.get("/forms/suggestions")
async def form_suggestions(store: DashboardStore = Depends(get_store)):
    require_material(store)
    return forms.form_suggestions(
        store.master_data, store.filtered_releases(), store.filtered_records()
    )


@router.get("/forms/orders")
async def order_suggestions(site: str, store: DashboardStore = Depends(get_store)):
    require_material(store)
    return forms.order_suggestions(store.filtered_releases(), site)


@router.get("/forms/available")
async def available_balance(
    site: str,
    order_no: str,
    exclude_id: Optional[str] = None,
    store: DashboardStore = Depends(get_store),
):
    require_material(store)
    check = forms.available_balance(
        store.filtered_releases(), store.filtered_records(), site, order_no, exclude_id
    )
    return {"has_release": check.has_release, "available": check.available}


@router.get("/insight")
async def insight(request: Request, lang: str = "ar", store: DashboardStore = Depends(get_store)):
    """One-line AI advice about the active commodity's trips."""
    require_material(store)
    lang = "ar" if lang == "ar" else "en"
    gemini_client = request.app.state.gemini_client
    if gemini_client is None:
        return {"insight": FALLBACK_INSIGHT[lang]}

    text = await asyncio.to_thread(
        gemini_client.generate_insight,
        store.filtered_records(),
        store.filtered_releases(),
        lang,
    )
    return {"insight": text}


@router.post("/webhook")
async def telegram_webhook(request: Request):
    """
    Webhook endpoint for Telegram updates.

    Telegram POSTs updates here when users send messages.
    """
    telegram_app = request.app.state.telegram_app
    if telegram_app is None:
        return Response(status_code=404)

    try:
        data = await request.json()
        logger.debug(f"Received webhook update: {data}")

        update = Update.de_json(data, telegram_app.bot)
        await telegram_app.process_update(update)

        return {"ok": True}

    except Exception as e:
        logger.exception(f"Error processing webhook: {e}")
        return Response(status_code=500)


def error_response(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


def create_app(
    store: Optional[DashboardStore] = None,
    sync_loop: Optional[SyncLoop] = None,
    gemini_client=None,
    enable_integrations: bool = True,
) -> FastAPI:
    """Build the API; a store and loop may be injected, otherwise they are built at startup."""
    app = FastAPI(
        title="Transport Tracker",
        description="Grain transport tracking against release quotas",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.store = store
    app.state.sync_loop = sync_loop
    app.state.gemini_client = gemini_client
    app.state.enable_integrations = enable_integrations
    app.state.telegram_app = None

    app.add_exception_handler(FormValidationError, error_response(422))
    app.add_exception_handler(PermissionDeniedError, error_response(403))
    app.add_exception_handler(NotFoundError, error_response(404))
    app.include_router(router)
    return app


app = create_app()


# For local development with polling
async def run_polling():
    """Run bot in polling mode for local development."""
    from .messaging.telegram_handler import TelegramHandler

    logger.info("🔄 Starting bot in polling mode (development)")

    store = build_store()
    sync_loop = SyncLoop(store)
    await sync_loop.refresh()
    sync_loop.start()

    telegram_handler = TelegramHandler(store, build_gemini_client(), sync_loop)
    application = telegram_handler.create_application()

    # Initialize and start polling
    await application.initialize()
    await application.start()
    await application.updater.start_polling(allowed_updates=Update.ALL_TYPES)

    logger.info("✅ Bot is running in polling mode. Press Ctrl+C to stop.")

    try:
        await asyncio.Event().wait()
    finally:
        logger.info("Stopping bot...")
        await sync_loop.stop()
        await application.updater.stop()
        await application.stop()
        await application.shutdown()
        store.close()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Transport Tracker")
    parser.add_argument(
        "--mode",
        choices=["polling", "webhook"],
        default="webhook",
        help="Run mode: polling (bot only, local dev) or webhook (API server)"
    )
    args = parser.parse_args()

    if args.mode == "polling":
        asyncio.run(run_polling())
    else:
        import uvicorn
        uvicorn.run(
            "transport_tracker.main:app",
            host="0.0.0.0",
            port=settings.port,
            log_level=settings.log_level.lower(),
            reload=not settings.is_production
        )
