"""Application state shared by the HTTP API and the Telegram bot."""

from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Callable, Deque, List, Optional

from loguru import logger

from ..models import (
    AppUser,
    DataSnapshot,
    FactoryBalance,
    MasterData,
    Material,
    OperationStatus,
    Release,
    TransportRecord,
)
from ..storage import FetchResult, LocalCache, RemoteClient
from . import balances, reports
from .errors import NotFoundError, PermissionDeniedError
from .forms import RecordForm, ReleaseForm

WRONG_PIN = "PIN غير صحيح"
READ_ONLY = "لا تملك صلاحية التعديل"
ADMIN_ONLY = "هذه العملية متاحة للمسؤول فقط"
LOGIN_REQUIRED = "يرجى تسجيل الدخول أولاً"
MATERIAL_REQUIRED = "يرجى اختيار القسم أولاً"
MATERIAL_NOT_ALLOWED = "غير مسموح لك بالدخول إلى هذا القسم"
SYNC_FAILED = "تعذر الاتصال بالسيرفر، يتم عرض آخر بيانات محفوظة"


class ConnectionStatus(str, Enum):
    ONLINE = "online"
    SYNCING = "syncing"
    OFFLINE = "offline"


@dataclass
class Notification:
    message: str
    level: str = "info"
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "level": self.level,
            "created_at": self.created_at.isoformat(timespec="seconds"),
        }


class DashboardStore:
    """Single source of truth for the dashboard.

    Starts from the local cache, is overwritten by every successful fetch,
    and applies user edits optimistically before posting them to the
    server in the background. A later fetch wins over any optimistic edit.
    """

    def __init__(
        self,
        client: RemoteClient,
        cache: Optional[LocalCache] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.client = client
        self.cache = cache or client.cache
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="mutations"
        )
        self._pending: List[Future] = []

        self._apply(self.cache.load_snapshot())
        self.current_user: Optional[AppUser] = self.cache.load_user()
        self.material: Optional[Material] = (
            self.current_user.default_material() if self.current_user else None
        )
        self.connection_status = ConnectionStatus.ONLINE
        self.last_synced_at: Optional[datetime] = None
        self.notifications: Deque[Notification] = deque(maxlen=50)

        logger.info(
            f"Store initialized from cache ({len(self.records)} records, "
            f"{len(self.releases)} releases)"
        )

    def _apply(self, snapshot: DataSnapshot) -> None:
        self.records: List[TransportRecord] = list(snapshot.transports)
        self.releases: List[Release] = list(snapshot.releases)
        self.factory_balances: List[FactoryBalance] = list(snapshot.factory_balances)
        self.master_data: MasterData = snapshot.master_data

    # Notifications

    def notify(self, message: str, level: str = "info") -> None:
        self.notifications.append(Notification(message, level))

    def drain_notifications(self) -> List[Notification]:
        drained = list(self.notifications)
        self.notifications.clear()
        return drained

    # Sync

    def refresh(self) -> FetchResult:
        """Blocking full re-fetch; replaces every bucket with the server copy."""
        self.connection_status = ConnectionStatus.SYNCING
        result = self.client.fetch_all()
        self._apply(result.snapshot)
        if result.degraded:
            self.connection_status = ConnectionStatus.OFFLINE
            self.notify(SYNC_FAILED, "warning")
        else:
            self.connection_status = ConnectionStatus.ONLINE
            self.last_synced_at = datetime.now()
        return result

    def _post(self, send: Callable[[], bool], failure_message: str) -> Future:
        """Hand a mutation to the background executor; never raises.

        The default executor has a single worker so posts reach the server
        in the order the edits were made.
        """
        def run() -> bool:
            ok = send()
            if ok:
                self.connection_status = ConnectionStatus.ONLINE
            else:
                self.connection_status = ConnectionStatus.OFFLINE
                self.notify(failure_message, "warning")
            return ok

        future = self._executor.submit(run)
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(future)
        return future

    def wait_for_pending(self, timeout: Optional[float] = None) -> None:
        """Block until queued mutations have been sent (or failed)."""
        wait(self._pending, timeout=timeout)
        self._pending = [f for f in self._pending if not f.done()]

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # Session

    def login(self, pin: str) -> AppUser:
        user = self.master_data.find_user(pin)
        if user is None:
            self.notify(WRONG_PIN, "error")
            raise PermissionDeniedError(WRONG_PIN)

        self.current_user = user
        self.material = user.default_material()
        self.cache.save_user(user)
        self.notify(f"مرحباً {user.name}", "success")
        logger.info(f"User {user.name} logged in ({user.role.value})")
        return user

    def logout(self) -> None:
        if self.current_user:
            logger.info(f"User {self.current_user.name} logged out")
        self.current_user = None
        self.material = None
        self.cache.save_user(None)

    def select_material(self, material: Material) -> None:
        user = self._require_user()
        if material not in user.allowed():
            raise PermissionDeniedError(MATERIAL_NOT_ALLOWED)
        self.material = material

    def _require_user(self) -> AppUser:
        if self.current_user is None:
            raise PermissionDeniedError(LOGIN_REQUIRED)
        return self.current_user

    def _require_editor(self, actor: Optional[AppUser] = None) -> AppUser:
        user = actor or self._require_user()
        if not user.can_edit:
            raise PermissionDeniedError(READ_ONLY)
        return user

    def _require_material(self) -> Material:
        if self.material is None:
            raise PermissionDeniedError(MATERIAL_REQUIRED)
        return self.material

    # Views for the active commodity

    @property
    def keyword(self) -> Optional[str]:
        return self.material.keyword if self.material else None

    def filtered_records(self) -> List[TransportRecord]:
        if self.material is None:
            return []
        return balances.filter_by_commodity(self.records, self.keyword)

    def filtered_releases(self) -> List[Release]:
        if self.material is None:
            return []
        return balances.filter_by_commodity(self.releases, self.keyword)

    def release_balances(self, only_open: bool = False) -> List[balances.ReleaseBalance]:
        return balances.compute_release_balances(
            self.filtered_releases(), self.filtered_records(), only_open=only_open
        )

    def site_balances(self) -> List[balances.SiteBalance]:
        if self.material is None:
            return []
        return balances.compute_site_balances(
            self.releases, self.records, self.factory_balances, self.keyword
        )

    def stats(self) -> dict:
        return reports.dashboard_stats(self.filtered_releases(), self.filtered_records())

    def periodic_report(
        self, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> reports.PeriodicReport:
        return reports.build_periodic_report(
            self.filtered_releases(), self.filtered_records(), date_from, date_to
        )

    def find_record(self, auto_id: str) -> TransportRecord:
        for record in self.records:
            if record.auto_id == auto_id:
                return record
        raise NotFoundError(f"السجل غير موجود: {auto_id}")

    def find_release(self, release_id: str) -> Release:
        for release in self.releases:
            if (release.id or release.release_no) == release_id:
                return release
        raise NotFoundError(f"الإفراج غير موجود: {release_id}")

    # Records

    def _replace_record(self, record: TransportRecord) -> None:
        self.records = [record if r.auto_id == record.auto_id else r for r in self.records]

    def add_record(self, form: RecordForm) -> TransportRecord:
        self._require_editor()
        self._require_material()
        record = form.submit(self.filtered_releases(), self.filtered_records())
        self.records = [record, *self.records]
        self.notify("تم تسجيل النقلة بنجاح وجاري المزامنة مع السيرفر...", "success")
        self._post(
            lambda: self.client.add_record(record),
            "فشل المزامنة مع السيرفر، تم الحفظ محلياً",
        )
        return record

    def update_record(self, auto_id: str, form: RecordForm) -> TransportRecord:
        self._require_editor()
        existing = self.find_record(auto_id)
        record = form.submit(
            self.filtered_releases(), self.filtered_records(), editing=existing
        )
        self._replace_record(record)
        self.notify("تم تحديث البيانات بنجاح", "success")
        self._post(lambda: self.client.update_record(record), "فشل تحديث السيرفر")
        return record

    def change_status(
        self,
        auto_id: str,
        status: OperationStatus,
        actor: Optional[AppUser] = None,
    ) -> TransportRecord:
        self._require_editor(actor)
        record = self.find_record(auto_id).model_copy(update={"status": status})
        self._replace_record(record)
        self.notify(f"تم تغيير الحالة إلى: {status.value}", "info")
        self._post(
            lambda: self.client.update_record(record),
            "فشل تحديث الحالة على السيرفر",
        )
        return record

    def delete_record(self, auto_id: str) -> None:
        self._require_editor()
        record = self.find_record(auto_id)
        self.records = [r for r in self.records if r.auto_id != auto_id]
        self.notify("تم حذف السجل بنجاح", "success")
        self._post(
            lambda: self.client.delete_record(record.auto_id, record.goods_type),
            "فشل في عملية الحذف على السيرفر",
        )

    # Releases

    def add_releases(self, form: ReleaseForm) -> List[Release]:
        self._require_editor()
        form.validate()
        if not form.goods_type and self.material:
            form.goods_type = self.material.default_goods_type
        new_releases = form.to_releases()
        self.releases = [*self.releases, *new_releases]
        self.notify("تمت إضافة الإفراجات بنجاح", "success")
        header, distributions = form.header(), form.distribution_payload()
        self._post(
            lambda: self.client.add_releases_bulk(header, distributions),
            "فشل حفظ الإفراج على السيرفر",
        )
        return new_releases

    def update_release(self, release_id: str, form: ReleaseForm) -> Release:
        self._require_editor()
        existing = self.find_release(release_id)
        form.validate()
        if not form.goods_type:
            form.goods_type = existing.goods_type
        updated = form.to_update(existing.id or release_id)
        self.releases = [updated if r is existing else r for r in self.releases]
        self.notify("تم التعديل بنجاح", "success")
        self._post(lambda: self.client.update_release(updated), "فشل تعديل الإفراج")
        return updated

    def delete_release(self, release_id: str) -> None:
        self._require_editor()
        existing = self.find_release(release_id)
        self.releases = [r for r in self.releases if r is not existing]
        self.notify("تم حذف الإفراج", "info")
        self._post(
            lambda: self.client.delete_release(release_id, existing.goods_type),
            "فشل الحذف",
        )

    # Factory balances and master data

    def update_factory_balance(
        self,
        site_name: str,
        opening_balance: float,
        manual_consumption: float,
        goods_type: Optional[str] = None,
    ) -> FactoryBalance:
        self._require_editor()
        keyword = self._require_material().keyword
        site_name = site_name.strip()
        # Rows are matched by commodity keyword; the given goods type only names new rows
        existing = balances.find_factory_balance(self.factory_balances, site_name, keyword)
        balance = FactoryBalance(
            id=existing.id if existing else None,
            site_name=site_name,
            goods_type=existing.goods_type if existing else (goods_type or keyword),
            opening_balance=opening_balance,
            manual_consumption=manual_consumption,
        )
        if existing:
            self.factory_balances = [
                balance if b is existing else b for b in self.factory_balances
            ]
        else:
            self.factory_balances = [*self.factory_balances, balance]
        self.notify("تم تحديث الرصيد بنجاح", "success")
        self._post(lambda: self.client.update_factory_balance(balance), "فشل في التحديث")
        return balance

    def save_master_data(self, data: MasterData) -> MasterData:
        user = self._require_user()
        if not user.is_admin:
            raise PermissionDeniedError(ADMIN_ONLY)
        self.master_data = data
        self.notify("تم حفظ الإعدادات", "success")
        self._post(lambda: self.client.save_master_data(data), "فشل حفظ البيانات الأساسية")
        return data
