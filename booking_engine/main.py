import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from .database import init_db
from .routers import booking_router
from .outbox_poller import run_outbox_poller
from .reconciler import run_reconciler
from .service import booking_engine, store

import redis.asyncio as redis
from fastapi_limiter import FastAPILimiter
from .config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("booking_engine")


async def _stop(task: asyncio.Task, name: str):
    task.cancel()
    # Await the cancellation to allow for graceful shutdown
    try:
        await task
    except asyncio.CancelledError:
        logger.info(f"{name} task successfully cancelled.")
    except Exception as e:
        logger.error(f"Error during {name} shutdown: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    if settings.AUTO_CREATE_TABLES:
        await init_db()

    redis_client = None
    try:
        redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8")
        await FastAPILimiter.init(redis_client)
        logger.info("FastAPILimiter initialized with Redis.")
    except Exception as e:
        logger.error(f"Failed to initialize FastAPILimiter: {e}")

    logger.info("Starting background tasks...")
    # Relays booking change events to Kafka
    poller_task = asyncio.create_task(run_outbox_poller(store))
    # Retries assignment, ledger and stats steps that failed after a save
    reconciler_task = asyncio.create_task(run_reconciler(booking_engine))

    yield  # The application is now running

    logger.info("Shutting down background tasks...")
    await _stop(poller_task, "Outbox poller")
    await _stop(reconciler_task, "Reconciler")

    if redis_client is not None:
        await redis_client.aclose()


app = FastAPI(
    title="Booking Reconciliation API",
    description="Saves bookings and keeps performer assignments, ledger entries and relationship stats in step.",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(booking_router.router)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Booking Reconciliation Service"}
