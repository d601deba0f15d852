"""Request bodies for the HTTP API."""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import ALL_MATERIALS, AppUser, Material, OperationStatus, UserRole
from .tracking.forms import Distribution, RecordForm, ReleaseForm


class LoginRequest(BaseModel):
    pin: str


class MaterialRequest(BaseModel):
    material: Material


class StatusRequest(BaseModel):
    status: OperationStatus


class RecordIn(BaseModel):
    """Trip entry; date and departure time default to now."""

    model_config = ConfigDict(str_strip_whitespace=True)

    unloading_site: str = ""
    order_no: str = ""
    weight: float = 0.0
    date: Optional[str] = None
    departure_time: Optional[str] = None
    status: OperationStatus = OperationStatus.IN_PROGRESS
    car_number: str = ""
    driver_name: str = ""
    driver_phone: str = ""
    goods_type: str = ""
    contractor_name: str = ""
    waybill_no: str = ""
    loading_site: str = ""
    notes: str = ""

    def to_form(self, material: Material) -> RecordForm:
        data = self.model_dump(exclude={"date", "departure_time"})
        return RecordForm(
            material=material,
            date=self.date or date.today().isoformat(),
            departure_time=self.departure_time or datetime.now().strftime("%H:%M"),
            **data,
        )


class DistributionIn(BaseModel):
    site_name: str
    quantity: float


class ReleaseIn(BaseModel):
    release_no: str = ""
    order_no: str = ""
    date: Optional[str] = None
    goods_type: str = ""
    notes: str = ""
    distributions: List[DistributionIn] = Field(default_factory=list)

    def to_form(self) -> ReleaseForm:
        return ReleaseForm(
            release_no=self.release_no,
            order_no=self.order_no,
            date=self.date or date.today().isoformat(),
            goods_type=self.goods_type,
            notes=self.notes,
            distributions=[Distribution(d.site_name, d.quantity) for d in self.distributions],
        )


class FactoryBalanceIn(BaseModel):
    site_name: str
    opening_balance: float = 0.0
    manual_consumption: float = 0.0
    goods_type: Optional[str] = None


class MasterItemsIn(BaseModel):
    """Comma separated values to append to a list."""

    raw: str


class UserIn(BaseModel):
    name: str
    pin: str
    role: UserRole = UserRole.VIEWER
    allowed_materials: str = ALL_MATERIALS

    def to_user(self) -> AppUser:
        return AppUser(**self.model_dump())
