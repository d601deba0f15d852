"""Record and release entry forms, master data edits and suggestions."""

import random
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence

from loguru import logger

from ..models import (
    MASTER_LISTS,
    AppUser,
    MasterData,
    Material,
    OperationStatus,
    Release,
    TransportRecord,
)
from .errors import FormValidationError

INSUFFICIENT_BALANCE = "الوزن المطلوب أكبر من الرصيد المتاح لهذا الإفراج"
NO_RELEASE_FOUND = "لا يوجد إفراج مسجل لهذا الموقع وأمر التوريد"
SITE_AND_ORDER_REQUIRED = "يرجى اختيار موقع التفريغ وأمر التوريد"
INVALID_DISTRIBUTIONS = "يرجى التأكد من إدخال الموقع والوزن بشكل صحيح لكافة الصفوف"
INCOMPLETE_USER = "يرجى إكمال بيانات المستخدم"
DUPLICATE_PIN = "هذا الكود السري مسجل لمستخدم آخر"

_LETTER = re.compile(r"[a-zA-Z\u0600-\u06FF]")
_DIGIT = re.compile(r"[0-9]")
_LIST_SEPARATORS = re.compile(r"[,،]")


def format_car_plate(value: str) -> str:
    """Space out a plate: after every letter, and between a digit and a letter.

    "ABC123" -> "A B C 123", "123ABC" -> "123 A B C".
    """
    clean = re.sub(r"\s+", "", value or "")
    out = []
    for i, char in enumerate(clean):
        out.append(char)
        if i + 1 < len(clean):
            is_letter = bool(_LETTER.match(char))
            next_is_letter = bool(_LETTER.match(clean[i + 1]))
            if is_letter or (_DIGIT.match(char) and next_is_letter):
                out.append(" ")
    return "".join(out)


def generate_record_id(prefix: str, now_ms: Optional[int] = None) -> str:
    """PREFIX-<4 random digits>-<last 4 digits of the ms timestamp>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}-{random.randint(1000, 9998)}-{str(now_ms)[-4:]}"


class BalanceCheck(NamedTuple):
    has_release: bool
    available: float


def available_balance(
    releases: Sequence[Release],
    records: Sequence[TransportRecord],
    site: str,
    order_no: str,
    exclude_id: Optional[str] = None,
) -> BalanceCheck:
    """Quantity still free on (site, order) counting every trip, whatever its status."""
    site, order_no = site.strip(), order_no.strip()
    matching = [r for r in releases if r.site_key == site and r.order_key == order_no]
    if not matching:
        return BalanceCheck(False, 0.0)

    released = sum(r.total_quantity for r in matching)
    consumed = sum(
        r.weight for r in records
        if r.site_key == site and r.order_key == order_no and r.auto_id != exclude_id
    )
    return BalanceCheck(True, max(0.0, released - consumed))


@dataclass
class RecordForm:
    """Input for a new or edited transport record."""

    material: Material
    unloading_site: str = ""
    order_no: str = ""
    weight: float = 0.0
    date: str = field(default_factory=lambda: date.today().isoformat())
    departure_time: str = field(default_factory=lambda: datetime.now().strftime("%H:%M"))
    status: OperationStatus = OperationStatus.IN_PROGRESS
    car_number: str = ""
    driver_name: str = ""
    driver_phone: str = ""
    goods_type: str = ""
    contractor_name: str = ""
    waybill_no: str = ""
    loading_site: str = ""
    notes: str = ""

    def __post_init__(self):
        self.car_number = format_car_plate(self.car_number)
        if not self.goods_type:
            self.goods_type = self.material.default_goods_type

    @classmethod
    def from_record(cls, record: TransportRecord, material: Material) -> "RecordForm":
        status = record.status
        if not isinstance(status, OperationStatus):
            status = OperationStatus.IN_PROGRESS
        return cls(
            material=material,
            unloading_site=record.unloading_site,
            order_no=record.order_no,
            weight=record.weight,
            date=record.date,
            departure_time=record.departure_time,
            status=status,
            car_number=record.car_number,
            driver_name=record.driver_name,
            driver_phone=record.driver_phone,
            goods_type=record.goods_type,
            contractor_name=record.contractor_name,
            waybill_no=record.waybill_no,
            loading_site=record.loading_site,
            notes=record.notes,
        )

    def validate(
        self,
        releases: Sequence[Release],
        records: Sequence[TransportRecord],
        editing_id: Optional[str] = None,
    ) -> BalanceCheck:
        if not self.unloading_site.strip() or not self.order_no.strip():
            raise FormValidationError(SITE_AND_ORDER_REQUIRED)

        check = available_balance(
            releases, records, self.unloading_site, self.order_no, editing_id
        )
        if not check.has_release:
            raise FormValidationError(NO_RELEASE_FOUND)
        if self.weight > 0 and self.weight > check.available + self.material.weight_tolerance:
            raise FormValidationError(INSUFFICIENT_BALANCE)
        return check

    def _fields(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "departure_time": self.departure_time,
            "status": self.status,
            "weight": self.weight,
            "car_number": self.car_number,
            "driver_name": self.driver_name.strip(),
            "driver_phone": self.driver_phone.strip(),
            "goods_type": self.goods_type,
            "order_no": self.order_no.strip(),
            "unloading_site": self.unloading_site.strip(),
            "loading_site": self.loading_site.strip(),
            "contractor_name": self.contractor_name.strip(),
            "waybill_no": self.waybill_no.strip(),
            "notes": self.notes,
        }

    def submit(
        self,
        releases: Sequence[Release],
        records: Sequence[TransportRecord],
        editing: Optional[TransportRecord] = None,
    ) -> TransportRecord:
        """Validate and build the record to hand to the store."""
        self.validate(releases, records, editing.auto_id if editing else None)
        if editing is not None:
            return editing.model_copy(update=self._fields())

        auto_id = generate_record_id(self.material.record_prefix)
        logger.info(f"New record {auto_id} for {self.unloading_site}/{self.order_no}")
        return TransportRecord(auto_id=auto_id, **self._fields())


@dataclass
class Distribution:
    site_name: str
    quantity: float


@dataclass
class ReleaseForm:
    """Release header shared by one or more site distributions."""

    release_no: str = ""
    order_no: str = ""
    date: str = field(default_factory=lambda: date.today().isoformat())
    goods_type: str = ""
    notes: str = ""
    distributions: List[Distribution] = field(default_factory=list)

    @classmethod
    def from_release(cls, release: Release) -> "ReleaseForm":
        return cls(
            release_no=release.release_no,
            order_no=release.order_no,
            date=release.day,
            goods_type=release.goods_type,
            notes=release.notes,
            distributions=[Distribution(release.site_name, release.total_quantity)],
        )

    def validate(self) -> None:
        if not self.distributions or any(
            not d.site_name.strip() or d.quantity <= 0 for d in self.distributions
        ):
            raise FormValidationError(INVALID_DISTRIBUTIONS)

    def header(self) -> Dict[str, Any]:
        return {
            "releaseNo": self.release_no.strip(),
            "orderNo": self.order_no.strip(),
            "date": self.date,
            "goodsType": self.goods_type,
            "notes": self.notes,
        }

    def distribution_payload(self) -> List[Dict[str, Any]]:
        return [
            {"siteName": d.site_name.strip(), "quantity": d.quantity}
            for d in self.distributions
        ]

    def to_releases(self) -> List[Release]:
        """Local rows for the new distributions; the server assigns ids."""
        return [
            Release(
                release_no=self.release_no.strip(),
                order_no=self.order_no.strip(),
                date=self.date,
                site_name=d.site_name.strip(),
                goods_type=self.goods_type,
                total_quantity=d.quantity,
                notes=self.notes,
            )
            for d in self.distributions
        ]

    def to_update(self, release_id: str) -> Release:
        """An edit keeps only the first distribution."""
        first = self.distributions[0]
        return Release(
            id=release_id,
            release_no=self.release_no.strip(),
            order_no=self.order_no.strip(),
            date=self.date,
            site_name=first.site_name.strip(),
            goods_type=self.goods_type,
            total_quantity=first.quantity,
            notes=self.notes,
        )


def _check_category(category: str) -> None:
    if category not in MASTER_LISTS:
        raise FormValidationError(f"قائمة غير معروفة: {category}")


def add_master_items(data: MasterData, category: str, raw: str) -> MasterData:
    """Append comma (or Arabic comma) separated values, without duplicates."""
    _check_category(category)
    values = [v.strip() for v in _LIST_SEPARATORS.split(raw or "") if v.strip()]
    current = getattr(data, category)
    merged = list(dict.fromkeys([*current, *values]))
    return data.model_copy(update={category: merged})


def remove_master_item(data: MasterData, category: str, item: str) -> MasterData:
    _check_category(category)
    current = getattr(data, category)
    return data.model_copy(update={category: [v for v in current if v != item]})


def add_user(data: MasterData, user: AppUser) -> MasterData:
    if not user.name or not user.pin:
        raise FormValidationError(INCOMPLETE_USER)
    if any(u.pin == user.pin for u in data.users):
        raise FormValidationError(DUPLICATE_PIN)
    return data.model_copy(update={"users": [*data.users, user]})


def remove_user(data: MasterData, pin: str) -> MasterData:
    pin = str(pin).strip()
    return data.model_copy(update={"users": [u for u in data.users if u.pin != pin]})


def merge_suggestions(*sources: Iterable[str]) -> List[str]:
    """Ordered union of non-empty values."""
    seen: Dict[str, None] = {}
    for source in sources:
        for value in source:
            value = str(value or "").strip()
            if value:
                seen.setdefault(value, None)
    return list(seen)


def form_suggestions(
    master: MasterData,
    releases: Sequence[Release],
    records: Sequence[TransportRecord],
) -> Dict[str, List[str]]:
    """Autocomplete lists for the record form."""
    return {
        "cars": merge_suggestions(master.cars, (r.car_number for r in records)),
        "drivers": merge_suggestions(master.drivers, (r.driver_name for r in records)),
        "contractors": merge_suggestions(master.contractors, (r.contractor_name for r in records)),
        "loading_sites": merge_suggestions(master.loading_sites, (r.loading_site for r in records)),
        "goods_types": merge_suggestions(master.goods_types, (r.goods_type for r in records)),
        "unloading_sites": merge_suggestions(master.unloading_sites, (r.site_key for r in releases)),
    }


def order_suggestions(releases: Sequence[Release], site: str) -> List[Dict[str, Any]]:
    """Order numbers released to a site, with their total and latest release date."""
    site = site.strip()
    if not site:
        return []

    grouped: Dict[str, Dict[str, Any]] = {}
    for release in releases:
        if release.site_key != site:
            continue
        entry = grouped.setdefault(release.order_key, {"total": 0.0, "date": release.day})
        entry["total"] += release.total_quantity
        if release.day > entry["date"]:
            entry["date"] = release.day

    return [
        {"order_no": order_no, "total": entry["total"], "date": entry["date"]}
        for order_no, entry in grouped.items()
    ]
