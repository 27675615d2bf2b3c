from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field, HttpUrl, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RideStateEnum(str, Enum):
    ACTIVE = "ACTIVE"
    TERMINATED = "TERMINATED"


class TerminatedTypeEnum(str, Enum):
    USER_REQUESTED = "USER_REQUESTED"
    ADMIN_REQUESTED = "ADMIN_REQUESTED"
    LOW_BATTERY = "LOW_BATTERY"
    FORCED = "FORCED"


class MonitoringStatusEnum(str, Enum):
    BEFORE_CONFIRM = "BEFORE_CONFIRM"
    CONFIRMED = "CONFIRMED"
    WRONG_PARKING = "WRONG_PARKING"
    DANGER_PARKING = "DANGER_PARKING"
    IN_COLLECTION_AREA = "IN_COLLECTION_AREA"
    WRONG_PICTURE = "WRONG_PICTURE"
    NO_PICTURE = "NO_PICTURE"
    COLLECTED_DEVICE = "COLLECTED_DEVICE"
    TOWED_DEVICE = "TOWED_DEVICE"


class MonitoringLogTypeEnum(str, Enum):
    INFO = "INFO"
    CHANGED = "CHANGED"
    SEND_MESSAGE = "SEND_MESSAGE"
    ADD_PAYMENT = "ADD_PAYMENT"


class PaymentTypeEnum(str, Enum):
    SERVICE = "SERVICE"
    SURCHARGE = "SURCHARGE"


class DeviceModeEnum(str, Enum):
    READY = "READY"
    IN_USE = "IN_USE"
    BROKEN = "BROKEN"
    COLLECTED = "COLLECTED"
    UNREGISTERED = "UNREGISTERED"
    DISABLED = "DISABLED"


class SortOrderEnum(str, Enum):
    asc = "asc"
    desc = "desc"


def _check_discount_pair(group_id: Optional[str], discount_id: Optional[str]) -> None:
    if bool(group_id) != bool(discount_id):
        raise ValueError("discount_group_id and discount_id must be supplied together")


# ---------------------------------------------------------------------------
# Collaborator payloads
# ---------------------------------------------------------------------------

class GpsFix(BaseModel):
    latitude: float
    longitude: float
    satellite_used_count: int = 0
    is_valid: bool = False
    speed: float = 0


class ScooterPower(BaseModel):
    battery: int = 0


class DevicePower(BaseModel):
    speed_limit: int = 0
    scooter: ScooterPower = Field(default_factory=ScooterPower)


class DeviceStatus(BaseModel):
    gps: GpsFix
    power: DevicePower = Field(default_factory=DevicePower)
    is_enabled: bool = False
    is_lights_on: bool = False
    is_fall_down: bool = False
    speed: float = 0
    created_at: datetime


class DeviceInfo(BaseModel):
    device_code: str
    mode: DeviceModeEnum
    franchise_id: str
    region_id: str
    helmet_id: Optional[str] = None


class Tariff(BaseModel):
    standard_price: Decimal = Decimal("0")
    nightly_price: Decimal = Decimal("0")
    per_minute_standard_price: Decimal = Decimal("0")
    per_minute_nightly_price: Decimal = Decimal("0")
    standard_time: int = 0  # minutes included in the standard fee
    surcharge_price: Decimal = Decimal("0")
    max_price: Optional[Decimal] = None
    equipment_lost_price: Optional[Decimal] = None


class LocationProfile(BaseModel):
    region_id: str
    has_surcharge: bool = False
    pricing: Tariff


class DiscountTerms(BaseModel):
    discount_group_id: Optional[str] = None
    discount_id: Optional[str] = None
    ratio_price_discount: Decimal = Decimal("0")
    static_price_discount: Decimal = Decimal("0")
    static_minute_discount: int = 0
    is_standard_included: bool = False
    is_per_minute_included: bool = False
    is_surcharge_included: bool = False


class TimelineEntry(BaseModel):
    latitude: float
    longitude: float
    battery: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class RideStartRequest(BaseModel):
    device_code: str = Field(..., min_length=1, max_length=16)
    user_id: str = Field(..., min_length=1)
    realname: str = Field(..., min_length=1, max_length=255)
    phone: str = Field(..., pattern=r"^\+\d+$")
    birthday: date
    discount_group_id: Optional[str] = None
    discount_id: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    debug: bool = False

    @model_validator(mode="after")
    def discount_pair(self):
        _check_discount_pair(self.discount_group_id, self.discount_id)
        return self


class RideTerminateRequest(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    terminated_type: TerminatedTypeEnum = TerminatedTypeEnum.USER_REQUESTED
    terminated_at: Optional[datetime] = None


class ChangeDiscountRequest(BaseModel):
    discount_group_id: Optional[str] = None
    discount_id: Optional[str] = None

    @model_validator(mode="after")
    def discount_pair(self):
        _check_discount_pair(self.discount_group_id, self.discount_id)
        return self


class PhotoUploadRequest(BaseModel):
    photo: HttpUrl


class MaxSpeedRequest(BaseModel):
    max_speed: Optional[int] = Field(default=None, ge=0, le=20)


class RideListQuery(BaseModel):
    take: int = Field(default=10, ge=1, le=100)
    skip: int = Field(default=0, ge=0)
    search: Optional[str] = None
    platform_id: Optional[list[str]] = None
    franchise_id: Optional[list[str]] = None
    region_id: Optional[list[str]] = None
    discount_group_id: Optional[list[str]] = None
    terminated_type: Optional[list[TerminatedTypeEnum]] = None
    device_code: Optional[list[str]] = None
    monitoring_status: Optional[list[MonitoringStatusEnum]] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    terminated_before: Optional[datetime] = None
    show_terminated: bool = True
    only_terminated: bool = False
    only_photo: bool = False
    only_no_photo: bool = False
    order_by_field: Literal["price", "started_at", "terminated_at", "created_at", "updated_at"] = "started_at"
    order_by_sort: SortOrderEnum = SortOrderEnum.desc


class LocationResponse(BaseModel):
    latitude: float
    longitude: float

    model_config = {"from_attributes": True}


class ReceiptUnitResponse(BaseModel):
    price: Decimal
    discount: Decimal
    total: Decimal

    model_config = {"from_attributes": True}


class ReceiptResponse(BaseModel):
    standard: ReceiptUnitResponse
    per_minute: ReceiptUnitResponse
    surcharge: ReceiptUnitResponse
    is_nightly: bool
    price: Decimal
    discount: Decimal
    total: Decimal

    model_config = {"from_attributes": True}


class RideResponse(BaseModel):
    id: str
    device_code: str
    user_id: str
    realname: str
    phone: str
    platform_id: str
    franchise_id: str
    region_id: str
    discount_group_id: Optional[str] = None
    discount_id: Optional[str] = None
    insurance_id: Optional[str] = None
    started_phone_location: LocationResponse
    started_device_location: LocationResponse
    terminated_phone_location: Optional[LocationResponse] = None
    terminated_device_location: Optional[LocationResponse] = None
    started_at: datetime
    terminated_at: Optional[datetime] = None
    terminated_type: Optional[TerminatedTypeEnum] = None
    monitoring_status: MonitoringStatusEnum
    photo: Optional[str] = None
    price: Decimal
    receipt: Optional[ReceiptResponse] = None

    model_config = {"from_attributes": True}


class RideStartResponse(BaseModel):
    ride_id: str


class RideListResponse(BaseModel):
    rides: list[RideResponse]
    total: int


# ---------------------------------------------------------------------------
# Payment schemas
# ---------------------------------------------------------------------------

class PaymentCreateRequest(BaseModel):
    payment_type: PaymentTypeEnum
    amount: Decimal
    description: Optional[str] = Field(default=None, max_length=255)


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=255)


class PaymentListQuery(BaseModel):
    take: int = Field(default=10, ge=1, le=100)
    skip: int = Field(default=0, ge=0)
    search: Optional[str] = None
    platform_id: Optional[list[str]] = None
    franchise_id: Optional[list[str]] = None
    payment_type: Optional[PaymentTypeEnum] = None
    only_refunded: Optional[bool] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    order_by_field: Literal["amount", "refunded_at", "created_at", "updated_at"] = "created_at"
    order_by_sort: SortOrderEnum = SortOrderEnum.desc


class PaymentResponse(BaseModel):
    id: str
    ride_id: str
    platform_id: str
    franchise_id: str
    payment_type: PaymentTypeEnum
    amount: Decimal
    initial_amount: Decimal
    description: Optional[str] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentListResponse(BaseModel):
    payments: list[PaymentResponse]
    total: int


# ---------------------------------------------------------------------------
# Monitoring schemas
# ---------------------------------------------------------------------------

class MonitoringStatusRequest(BaseModel):
    monitoring_status: MonitoringStatusEnum
    send_message: bool = False
    price: Optional[Decimal] = Field(default=None, ge=0)


class MonitoringLogResponse(BaseModel):
    id: str
    ride_id: str
    monitoring_status: MonitoringStatusEnum
    log_type: MonitoringLogTypeEnum
    message: str
    created_at: datetime

    model_config = {"from_attributes": True}


class MonitoringLogListResponse(BaseModel):
    monitoring_logs: list[MonitoringLogResponse]
    total: int


# ---------------------------------------------------------------------------
# Webhook schemas
# ---------------------------------------------------------------------------

class LowBatteryWebhook(BaseModel):
    device_code: str
    battery: Optional[int] = None


class SpeedChangeWebhook(BaseModel):
    device_code: str
    speed_limit: Optional[int] = None
    payload: dict[str, Any] = Field(default_factory=dict)
