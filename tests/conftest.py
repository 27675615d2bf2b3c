"""
Shared fixtures: in-memory SQLite session, fake collaborators, ride factory.
"""
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ride_service import models  # noqa: F401  registers every table
from ride_service.config import Settings
from ride_service.database import Base, utcnow
from ride_service.models.location import Location
from ride_service.models.ride import Ride
from ride_service.redis_client import KeyedLock
from ride_service.schemas.schemas import (
    DeviceInfo,
    DeviceModeEnum,
    DeviceStatus,
    DiscountTerms,
    GpsFix,
    LocationProfile,
    Tariff,
)
from ride_service.services.collaborators import Collaborators

DEVICE_LAT = 37.5665
DEVICE_LNG = 126.9780
PLATFORM_ID = "platform-test-001"


@pytest_asyncio.fixture
async def db() -> AsyncSession:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        allow_debug_start=False,
        start_distance_limit_meters=300.0,
        photo_upload_window_minutes=30,
        photo_checker_grace_minutes=5,
        photo_checker_page_size=2,
    )


@pytest.fixture
def tariff() -> Tariff:
    return Tariff(
        standard_price=Decimal("1000"),
        per_minute_standard_price=Decimal("100"),
        standard_time=15,
        surcharge_price=Decimal("500"),
    )


@pytest.fixture
def collaborators(tariff) -> Collaborators:
    devices = AsyncMock()
    devices.get_device.return_value = DeviceInfo(
        device_code="DEV001",
        mode=DeviceModeEnum.READY,
        franchise_id="franchise-1",
        region_id="region-1",
    )
    devices.get_latest_status.return_value = DeviceStatus(
        gps=GpsFix(latitude=DEVICE_LAT, longitude=DEVICE_LNG, is_valid=True),
        created_at=utcnow(),
    )
    devices.get_status_timeline.return_value = []

    insurance = AsyncMock()
    insurance.start.return_value = "insurance-1"

    discounts = AsyncMock()
    discounts.get_discount.side_effect = lambda group_id, discount_id: DiscountTerms(
        discount_group_id=group_id, discount_id=discount_id
    )

    locations = AsyncMock()
    locations.get_profile.return_value = LocationProfile(region_id="region-1", pricing=tariff)

    equipment = AsyncMock()
    equipment.has_unreturned.return_value = False

    return Collaborators(
        devices=devices,
        insurance=insurance,
        discounts=discounts,
        webhooks=AsyncMock(),
        locations=locations,
        equipment=equipment,
        messages=AsyncMock(),
    )


@pytest.fixture
def mock_redis():
    redis = AsyncMock()
    redis.set.return_value = True
    redis.get.return_value = None
    return redis


@pytest.fixture
def locks(mock_redis) -> KeyedLock:
    return KeyedLock(mock_redis, ttl_seconds=30)


@pytest.fixture
def make_ride(db):
    async def _make_ride(
        *,
        device_code: str = "DEV001",
        platform_id: str = PLATFORM_ID,
        started_at: Optional[datetime] = None,
        terminated_at: Optional[datetime] = None,
        insurance_id: Optional[str] = "insurance-1",
        discount_group_id: Optional[str] = None,
        discount_id: Optional[str] = None,
        photo: Optional[str] = None,
        monitoring_status: str = "BEFORE_CONFIRM",
    ) -> Ride:
        ride = Ride(
            device_code=device_code,
            user_id="user-1",
            realname="Jane Rider",
            phone="+821012345678",
            birthday=date(1990, 1, 1),
            platform_id=platform_id,
            franchise_id="franchise-1",
            region_id="region-1",
            discount_group_id=discount_group_id,
            discount_id=discount_id,
            insurance_id=insurance_id,
            started_phone_location=Location(latitude=DEVICE_LAT, longitude=DEVICE_LNG),
            started_device_location=Location(latitude=DEVICE_LAT, longitude=DEVICE_LNG),
            started_at=started_at or utcnow() - timedelta(minutes=20),
            terminated_at=terminated_at,
            terminated_type="USER_REQUESTED" if terminated_at else None,
            photo=photo,
            monitoring_status=monitoring_status,
            price=Decimal("0"),
        )
        db.add(ride)
        await db.commit()
        await db.refresh(ride)
        return ride

    return _make_ride
