import uuid
from datetime import datetime
from sqlalchemy import String, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from ride_service.database import Base, UTCDateTime, utcnow


class MonitoringLog(Base):
    __tablename__ = "monitoring_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ride_id: Mapped[str] = mapped_column(String, ForeignKey("rides.id"), nullable=False, index=True)
    monitoring_status: Mapped[str] = mapped_column(String(30), nullable=False)
    # INFO | CHANGED | SEND_MESSAGE | ADD_PAYMENT
    log_type: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
