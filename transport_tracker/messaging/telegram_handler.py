"""Telegram bot handler for transport tracking."""

import asyncio
from datetime import datetime
from typing import List, Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    CallbackQueryHandler,
    filters,
    ContextTypes
)
from loguru import logger

from ..config import settings
from ..llm.prompts import FALLBACK_INSIGHT
from ..models import AppUser, Material, OperationStatus, TransportRecord
from ..tracking import DashboardStore, PermissionDeniedError, SyncLoop, TrackerError
from ..tracking import balances, reports

STATUS_CODES = {
    "d": OperationStatus.DONE,
    "p": OperationStatus.IN_PROGRESS,
    "s": OperationStatus.STOPPED,
}

MATERIAL_LABELS = {
    Material.SOY: "🌱 قسم الصويا",
    Material.MAIZE: "🌽 قسم الذرة",
}

INVALID_ACTION = "❌ إجراء غير صالح، يرجى استخدام /menu أو /records من جديد"


def format_tons(value: float) -> str:
    return f"{value:,.2f} طن"


def format_release_balances(rows: List[balances.ReleaseBalance]) -> str:
    if not rows:
        return "📭 لا توجد إفراجات مفتوحة."

    lines = ["📊 موقف الإفراجات\n"]
    for row in rows:
        lines.append(f"📍 {row.site} | أمر توريد {row.order_no}")
        lines.append(f"   المفرج: {format_tons(row.total_released)}")
        lines.append(f"   المنفذ: {format_tons(row.executed)}")
        lines.append(f"   جاري التنفيذ: {format_tons(row.in_transit)}")
        if row.stopped:
            lines.append(f"   متوقف: {format_tons(row.stopped)}")
        lines.append(f"   المتبقي: {format_tons(row.remaining)} ({row.completion_pct:.0f}%)\n")
    return "\n".join(lines)


def format_site_balances(rows: List[balances.SiteBalance]) -> str:
    if not rows:
        return "📭 لا توجد أرصدة لهذا القسم."

    lines = ["🏭 أرصدة المخازن\n"]
    for row in rows:
        lines.append(f"📍 {row.site}")
        lines.append(f"   رصيد أول المدة: {format_tons(row.opening)}")
        lines.append(f"   الوارد: {format_tons(row.executed)}")
        lines.append(f"   المنصرف: {format_tons(row.manual_consumption)}")
        lines.append(f"   رصيد المصنع: {format_tons(row.factory_stock)}")
        lines.append(f"   المتبقي بالإفراجات: {format_tons(row.release_remaining)}\n")
    return "\n".join(lines)


def format_record(record: TransportRecord) -> str:
    status = getattr(record.status, "value", record.status)
    return (
        f"🚛 {record.car_number or '-'} | {record.driver_name or '-'}\n"
        f"   📍 {record.unloading_site} | أمر {record.order_no}\n"
        f"   ⚖️ {format_tons(record.weight)} | {status}\n"
        f"   📅 {reports.format_day(record.date)} | {record.auto_id}"
    )


def format_report(report: reports.PeriodicReport) -> str:
    lines = [
        f"📈 تقرير الفترة {report.date_from:%d/%m/%Y} - {report.date_to:%d/%m/%Y}\n",
        f"إجمالي الإفراجات: {format_tons(report.total_released)}",
        f"إجمالي المنفذ: {format_tons(report.total_added)}",
        f"إجمالي المتوقف: {format_tons(report.total_stopped)}",
        f"عدد النقلات: {report.total_trips}\n",
    ]
    for site, data in report.sites.items():
        lines.append(
            f"• {site}: {format_tons(data.added)} من {format_tons(data.released)} "
            f"({data.completion_pct:.1f}%) - {data.trips} نقلة"
        )
    return "\n".join(lines)


class TelegramHandler:
    """Handler for Telegram bot interactions - transport tracking.

    Each chat keeps its own login and commodity in `context.user_data`;
    all chats read from the shared store.
    """

    def __init__(self, store: DashboardStore, gemini_client=None, sync_loop: Optional[SyncLoop] = None):
        """Initialize Telegram handler.

        `sync_loop` is started on the first successful chat login so the
        shared store keeps refreshing while only the bot is in use.
        """
        self.bot_token = settings.telegram_bot_token
        self.store = store
        self.gemini_client = gemini_client
        self.sync_loop = sync_loop

        logger.info("Telegram handler initialized for transport tracking")

    def _user(self, context: ContextTypes.DEFAULT_TYPE) -> Optional[AppUser]:
        return context.user_data.get("user")

    def _material(self, context: ContextTypes.DEFAULT_TYPE) -> Optional[Material]:
        return context.user_data.get("material")

    async def _require_session(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> Optional[Material]:
        """Return the chat's commodity, or reply with what is missing."""
        message = update.effective_message
        if self._user(context) is None:
            await message.reply_text("🔒 يرجى تسجيل الدخول أولاً: /login <PIN>")
            return None
        material = self._material(context)
        if material is None:
            await self._send_material_picker(message, self._user(context))
            return None
        return material

    async def _send_material_picker(self, message, user: AppUser):
        keyboard = [
            [InlineKeyboardButton(MATERIAL_LABELS[m], callback_data=f"material:{m.value}")]
            for m in user.allowed()
        ]
        await message.reply_text(
            "اختر القسم للمتابعة:",
            reply_markup=InlineKeyboardMarkup(keyboard)
        )

    async def start_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /start command."""
        welcome_message = """
👋 مرحباً بك في منصة النقل الذكي!

الأوامر المتاحة:
/login <PIN> - تسجيل الدخول بالرمز السري
/menu - اختيار القسم (صويا / ذرة)
/balances - موقف الإفراجات
/factory - أرصدة المخازن
/records - آخر النقلات
/report [من إلى] - تقرير الفترة (YYYY-MM-DD)
/insight - رؤية الذكاء الاصطناعي
/logout - تسجيل الخروج
        """
        await update.message.reply_text(welcome_message.strip())

    async def login_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /login <PIN>."""
        if not context.args:
            await update.message.reply_text("استخدم: /login <PIN>")
            return

        user = self.store.master_data.find_user(context.args[0])
        if user is None:
            await update.message.reply_text("❌ PIN غير صحيح")
            return

        context.user_data["user"] = user
        context.user_data["material"] = user.default_material()
        logger.info(f"Chat {update.effective_chat.id} logged in as {user.name}")
        if self.sync_loop is not None:
            self.sync_loop.start()

        await update.message.reply_text(f"✅ مرحباً {user.name}")
        if context.user_data["material"] is None:
            await self._send_material_picker(update.message, user)

    async def logout_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /logout."""
        context.user_data.clear()
        await update.message.reply_text("👋 تم تسجيل الخروج")

    async def menu_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /menu - pick the commodity section."""
        user = self._user(context)
        if user is None:
            await update.message.reply_text("🔒 يرجى تسجيل الدخول أولاً: /login <PIN>")
            return
        await self._send_material_picker(update.message, user)

    async def balances_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /balances - open release balances for the chat's commodity."""
        material = await self._require_session(update, context)
        if material is None:
            return
        rows = balances.compute_release_balances(
            self.store.releases, self.store.records, material.keyword, only_open=True
        )
        await update.message.reply_text(format_release_balances(rows))

    async def factory_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /factory - per-site stock."""
        material = await self._require_session(update, context)
        if material is None:
            return
        rows = balances.compute_site_balances(
            self.store.releases,
            self.store.records,
            self.store.factory_balances,
            material.keyword,
        )
        await update.message.reply_text(format_site_balances(rows))

    async def records_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /records - 5 latest trips, with status buttons for editors."""
        material = await self._require_session(update, context)
        if material is None:
            return

        records = reports.search_records(
            balances.filter_by_commodity(self.store.records, material.keyword)
        )[:5]
        if not records:
            await update.message.reply_text("📭 لا توجد نقلات مسجلة.")
            return

        can_edit = self._user(context).can_edit
        for record in records:
            reply_markup = None
            if can_edit:
                reply_markup = InlineKeyboardMarkup([[
                    InlineKeyboardButton(status.value, callback_data=f"status:{code}:{record.auto_id}")
                    for code, status in STATUS_CODES.items()
                    if record.status != status
                ]])
            await update.message.reply_text(format_record(record), reply_markup=reply_markup)

    async def report_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /report [from to] - periodic report, this month by default."""
        material = await self._require_session(update, context)
        if material is None:
            return

        date_from = date_to = None
        if len(context.args) >= 2:
            try:
                date_from = datetime.strptime(context.args[0], "%Y-%m-%d").date()
                date_to = datetime.strptime(context.args[1], "%Y-%m-%d").date()
            except ValueError:
                await update.message.reply_text(
                    "❌ صيغة التاريخ غير صحيحة. مثال: /report 2025-01-01 2025-01-31"
                )
                return

        report = reports.build_periodic_report(
            balances.filter_by_commodity(self.store.releases, material.keyword),
            balances.filter_by_commodity(self.store.records, material.keyword),
            date_from,
            date_to,
        )
        await update.message.reply_text(format_report(report))

    async def insight_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /insight - one-line AI advice."""
        material = await self._require_session(update, context)
        if material is None:
            return

        if self.gemini_client is None:
            await update.message.reply_text(f"🧠 {FALLBACK_INSIGHT['ar']}")
            return

        await update.message.reply_text("🧠 جاري تحليل الأنماط والبيانات...")
        insight = await asyncio.to_thread(
            self.gemini_client.generate_insight,
            balances.filter_by_commodity(self.store.records, material.keyword),
            balances.filter_by_commodity(self.store.releases, material.keyword),
        )
        await update.message.reply_text(f"🧠 {insight}")

    async def handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle inline button presses."""
        query = update.callback_query
        await query.answer()
        data = query.data or ""

        user = self._user(context)
        if user is None:
            await query.message.reply_text("🔒 يرجى تسجيل الدخول أولاً: /login <PIN>")
            return

        if data.startswith("material:"):
            try:
                material = Material(data.split(":", 1)[1])
            except ValueError:
                logger.warning(f"Unknown material in callback: {data}")
                await query.message.reply_text(INVALID_ACTION)
                return
            if material not in user.allowed():
                await query.message.reply_text("❌ غير مسموح لك بالدخول إلى هذا القسم")
                return
            context.user_data["material"] = material
            await query.message.reply_text(
                f"✅ {MATERIAL_LABELS[material]}\nاستخدم /balances أو /records"
            )
            return

        if data.startswith("status:"):
            parts = data.split(":", 2)
            if len(parts) != 3 or parts[1] not in STATUS_CODES:
                logger.warning(f"Malformed status callback: {data}")
                await query.message.reply_text(INVALID_ACTION)
                return
            _, code, auto_id = parts
            try:
                record = self.store.change_status(auto_id, STATUS_CODES[code], actor=user)
            except PermissionDeniedError as e:
                await query.message.reply_text(f"❌ {e}")
                return
            except TrackerError as e:
                logger.warning(f"Status change failed for {auto_id}: {e}")
                await query.message.reply_text(f"❌ {e}")
                return
            await query.edit_message_text(format_record(record))
            return

        logger.warning(f"Unknown callback data: {data}")

    async def handle_text_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Guide users back to the commands."""
        await update.message.reply_text(
            "📋 استخدم الأوامر للتفاعل مع البوت. اكتب /start لعرض القائمة."
        )

    def setup_handlers(self, application: Application):
        """Set up all command and message handlers."""
        application.add_handler(CommandHandler("start", self.start_command))
        application.add_handler(CommandHandler("login", self.login_command))
        application.add_handler(CommandHandler("logout", self.logout_command))
        application.add_handler(CommandHandler("menu", self.menu_command))
        application.add_handler(CommandHandler("balances", self.balances_command))
        application.add_handler(CommandHandler("factory", self.factory_command))
        application.add_handler(CommandHandler("records", self.records_command))
        application.add_handler(CommandHandler("report", self.report_command))
        application.add_handler(CommandHandler("insight", self.insight_command))

        application.add_handler(
            MessageHandler(
                filters.TEXT & ~filters.COMMAND,
                self.handle_text_message
            )
        )

        application.add_handler(CallbackQueryHandler(self.handle_callback))

        logger.info("All handlers registered")

    def create_application(self) -> Application:
        """Create and configure the Telegram Application instance.

        Returns:
            Application: Configured Telegram application with all handlers registered.
        """
        from telegram.request import HTTPXRequest

        request = HTTPXRequest(
            connection_pool_size=8,
            connect_timeout=30.0,
            read_timeout=60.0,
            write_timeout=30.0,
            pool_timeout=10.0
        )

        application = (
            Application.builder()
            .token(self.bot_token)
            .request(request)
            .build()
        )
        self.setup_handlers(application)
        logger.info("Telegram application created")
        return application
