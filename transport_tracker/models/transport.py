"""Data models for transport tracking.

Field names follow the spreadsheet backend (camelCase on the wire), exposed
as snake_case attributes through pydantic aliases. Spreadsheet cells are
loosely typed, so every model decodes leniently: blanks become defaults,
numbers become strings where text is expected and unparsable numbers
become zero.
"""

import math
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class OperationStatus(str, Enum):
    """Trip status values as stored in the sheet."""

    DONE = "تمت"
    IN_PROGRESS = "جاري التنفيذ"
    STOPPED = "متوقفة"


class UserRole(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


ALL_MATERIALS = "الكل"


class Material(str, Enum):
    """Commodity sections of the dashboard."""

    SOY = "soy"
    MAIZE = "maize"

    @property
    def keyword(self) -> str:
        """Substring identifying this commodity inside a goods type."""
        return "صويا" if self is Material.SOY else "ذرة"

    @property
    def default_goods_type(self) -> str:
        return "صويا" if self is Material.SOY else "ذرة صفراء"

    @property
    def record_prefix(self) -> str:
        return "SOY" if self is Material.SOY else "TR"

    @property
    def weight_tolerance(self) -> float:
        """Rounding slack allowed when checking weight against balance."""
        return 0.1 if self is Material.SOY else 0.0


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        if isinstance(value, str):
            value = value.replace(",", "").strip()
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    # "nan" and "inf" cells parse but are not quantities
    return result if math.isfinite(result) else 0.0


class SheetModel(BaseModel):
    """Base model for rows served by the spreadsheet endpoint."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="allow",
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # Let field defaults apply to blank cells
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_payload(self) -> Dict[str, Any]:
        """Serialize with wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)


StatusValue = Annotated[
    Union[OperationStatus, str], Field(union_mode="left_to_right")
]


class TransportRecord(SheetModel):
    """One truck trip."""

    auto_id: str = ""
    date: str = ""
    departure_time: str = ""
    car_number: str = ""
    driver_name: str = ""
    driver_phone: str = ""
    goods_type: str = ""
    weight: float = 0.0
    status: StatusValue = OperationStatus.IN_PROGRESS
    order_no: str = ""
    unloading_site: str = ""
    loading_site: str = ""
    contractor_name: str = ""
    waybill_no: str = ""
    notes: str = ""

    @field_validator("weight", mode="before")
    @classmethod
    def _coerce_weight(cls, value: Any) -> float:
        return _to_float(value)

    @field_validator("status", mode="before")
    @classmethod
    def _strip_status(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @property
    def site_key(self) -> str:
        return self.unloading_site.strip()

    @property
    def order_key(self) -> str:
        return self.order_no.strip()


class Release(SheetModel):
    """A quota grant for a site and order number."""

    id: Optional[str] = None
    release_no: str = ""
    order_no: str = ""
    date: str = ""
    site_name: str = ""
    goods_type: str = ""
    total_quantity: float = 0.0
    notes: str = ""

    @field_validator("total_quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> float:
        return _to_float(value)

    @property
    def site_key(self) -> str:
        return self.site_name.strip()

    @property
    def order_key(self) -> str:
        return self.order_no.strip()

    @property
    def day(self) -> str:
        """Date without any time component."""
        return self.date.split("T")[0]


class FactoryBalance(SheetModel):
    """Manual opening balance and consumption for a site and goods type."""

    id: Optional[str] = None
    site_name: str = ""
    goods_type: str = ""
    opening_balance: float = 0.0
    manual_consumption: float = 0.0

    @field_validator("opening_balance", "manual_consumption", mode="before")
    @classmethod
    def _coerce_amounts(cls, value: Any) -> float:
        return _to_float(value)


class AppUser(SheetModel):
    """Directory entry used for PIN login."""

    name: str = ""
    pin: str = ""
    role: UserRole = UserRole.VIEWER
    allowed_materials: str = ALL_MATERIALS

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            if value not in {r.value for r in UserRole}:
                return UserRole.VIEWER
        return value

    @field_validator("pin", "name", mode="after")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @property
    def can_edit(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.EDITOR)

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN

    def allowed(self) -> List[Material]:
        """Materials this user may open."""
        scope = (self.allowed_materials or ALL_MATERIALS).strip()
        return [m for m in Material if scope == ALL_MATERIALS or scope == m.keyword]

    def default_material(self) -> Optional[Material]:
        allowed = self.allowed()
        return allowed[0] if len(allowed) == 1 else None


MASTER_LISTS = (
    "drivers",
    "cars",
    "loading_sites",
    "unloading_sites",
    "goods_types",
    "order_numbers",
    "contractors",
    "items",
)


class MasterData(SheetModel):
    """Reference lists and the user directory."""

    drivers: List[str] = []
    cars: List[str] = []
    loading_sites: List[str] = []
    unloading_sites: List[str] = []
    goods_types: List[str] = []
    order_numbers: List[str] = []
    contractors: List[str] = []
    users: List[AppUser] = []
    items: List[str] = []

    @field_validator(*MASTER_LISTS, mode="before")
    @classmethod
    def _clean_list(cls, value: Any) -> List[str]:
        if not value:
            return []
        return [str(v).strip() for v in value if v is not None and str(v).strip()]

    def find_user(self, pin: str) -> Optional[AppUser]:
        pin = str(pin).strip()
        if not pin:
            return None
        for user in self.users:
            if user.pin == pin:
                return user
        return None


class DataSnapshot(BaseModel):
    """Full dataset as returned by the getAllData action."""

    transports: List[TransportRecord] = []
    releases: List[Release] = []
    factory_balances: List[FactoryBalance] = []
    master_data: MasterData = Field(default_factory=MasterData)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DataSnapshot":
        return cls(
            transports=payload.get("transports") or [],
            releases=payload.get("releases") or [],
            factory_balances=payload.get("factoryBalances") or [],
            master_data=payload.get("masterData") or {},
        )
