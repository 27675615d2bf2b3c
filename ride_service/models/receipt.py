import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Boolean, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ride_service.database import Base, UTCDateTime, utcnow


class ReceiptUnit(Base):
    __tablename__ = "receipt_units"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))


class Receipt(Base):
    """Fare snapshot taken once, at termination. Never updated afterwards."""

    __tablename__ = "receipts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    standard_id: Mapped[str] = mapped_column(String, ForeignKey("receipt_units.id"), nullable=False)
    per_minute_id: Mapped[str] = mapped_column(String, ForeignKey("receipt_units.id"), nullable=False)
    surcharge_id: Mapped[str] = mapped_column(String, ForeignKey("receipt_units.id"), nullable=False)

    is_nightly: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    standard: Mapped[ReceiptUnit] = relationship(foreign_keys=[standard_id], lazy="selectin")
    per_minute: Mapped[ReceiptUnit] = relationship(foreign_keys=[per_minute_id], lazy="selectin")
    surcharge: Mapped[ReceiptUnit] = relationship(foreign_keys=[surcharge_id], lazy="selectin")
