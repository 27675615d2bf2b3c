import uuid
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy import String, Date, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ride_service.database import Base, UTCDateTime, utcnow
from ride_service.models.location import Location
from ride_service.models.receipt import Receipt


class Ride(Base):
    __tablename__ = "rides"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    device_code: Mapped[str] = mapped_column(String(16), nullable=False, index=True)

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    realname: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    birthday: Mapped[date] = mapped_column(Date, nullable=False)

    platform_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    franchise_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    region_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    discount_group_id: Mapped[str | None] = mapped_column(String, nullable=True)
    discount_id: Mapped[str | None] = mapped_column(String, nullable=True)
    insurance_id: Mapped[str | None] = mapped_column(String, nullable=True)

    started_phone_location_id: Mapped[str] = mapped_column(String, ForeignKey("locations.id"), nullable=False)
    started_device_location_id: Mapped[str] = mapped_column(String, ForeignKey("locations.id"), nullable=False)
    terminated_phone_location_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("locations.id"), nullable=True
    )
    terminated_device_location_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("locations.id"), nullable=True
    )

    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, index=True)
    terminated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    # USER_REQUESTED | ADMIN_REQUESTED | LOW_BATTERY | FORCED
    terminated_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    # BEFORE_CONFIRM | CONFIRMED | WRONG_PARKING | ... (see MonitoringStatusEnum)
    monitoring_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="BEFORE_CONFIRM", index=True
    )
    photo: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Always Σ(payments.amount WHERE refunded_at IS NULL); maintained by the ledger
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    receipt_id: Mapped[str | None] = mapped_column(String, ForeignKey("receipts.id"), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    started_phone_location: Mapped[Location] = relationship(
        foreign_keys=[started_phone_location_id], lazy="selectin"
    )
    started_device_location: Mapped[Location] = relationship(
        foreign_keys=[started_device_location_id], lazy="selectin"
    )
    terminated_phone_location: Mapped[Location | None] = relationship(
        foreign_keys=[terminated_phone_location_id], lazy="selectin"
    )
    terminated_device_location: Mapped[Location | None] = relationship(
        foreign_keys=[terminated_device_location_id], lazy="selectin"
    )
    receipt: Mapped[Receipt | None] = relationship(lazy="selectin")
