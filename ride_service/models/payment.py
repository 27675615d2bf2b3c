import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from ride_service.database import Base, UTCDateTime, utcnow


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ride_id: Mapped[str] = mapped_column(String, ForeignKey("rides.id"), nullable=False, index=True)
    platform_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    franchise_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    # SERVICE | SURCHARGE
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    # 0 <= amount <= initial_amount; partial refunds lower `amount`
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    initial_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)
