"""
FastAPI application with New Relic APM, CORS, lifespan, and all routers.
"""
import asyncio
import logging
import os

# New Relic must be initialized BEFORE any other imports that it instruments.
if os.getenv("NEW_RELIC_LICENSE_KEY"):
    import newrelic.agent
    newrelic.agent.initialize("newrelic.ini")

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ride_service.config import Settings, get_settings
from ride_service.database import AsyncSessionLocal
from ride_service.errors import RideServiceError
from ride_service.redis_client import get_redis, close_redis
from ride_service.routers import monitoring, payments, rides, webhooks
from ride_service.services.collaborators import Collaborators, build_collaborators
from ride_service.services.monitoring import MonitoringService, check_returned_photos
from ride_service.services.payment import PaymentLedger

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


async def run_photo_checker(collaborators: Collaborators, settings: Settings) -> None:
    """Sweep for rides returned without a photo every interval."""
    while True:
        try:
            async with AsyncSessionLocal() as db:
                ledger = PaymentLedger(db, collaborators.webhooks)
                service = MonitoringService(db, ledger, collaborators.messages)
                processed = await check_returned_photos(db, service, settings)
            if processed:
                logger.info("Returned photo checker marked %d ride(s)", processed)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Returned photo checker run failed")
        await asyncio.sleep(settings.photo_checker_interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s [%s]", settings.app_name, settings.env)
    await get_redis()          # warm up connection pool
    app.state.collaborators = build_collaborators(settings)

    checker = None
    if settings.photo_checker_enabled:
        checker = asyncio.create_task(run_photo_checker(app.state.collaborators, settings))
    yield
    if checker:
        checker.cancel()
        try:
            await checker
        except asyncio.CancelledError:
            pass
    await close_redis()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Ride lifecycle and fare settlement for shared micromobility devices",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RideServiceError)
async def ride_service_exception_handler(request: Request, exc: RideServiceError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s %s", exc.code, request.url, exc.message, exc.details)
    else:
        logger.info("%s on %s: %s", exc.code, request.url, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Health check (no auth)
@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


# Register routers
app.include_router(rides.router)
app.include_router(payments.router)
app.include_router(payments.platform_router)
app.include_router(monitoring.router)
app.include_router(webhooks.router)
