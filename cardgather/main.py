import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import update

from cardgather.database import async_session, init_db
from cardgather.log import setup_logging
from cardgather.models import Scan
from cardgather.routers import health, scanner
from cardgather.services.scheduler import start_scheduler, stop_scheduler

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting CardGather")
    await init_db()
    # Mark any scans left "running" or "pending" from a previous crash as failed
    async with async_session() as session:
        result = await session.execute(
            update(Scan)
            .where(Scan.status.in_(["running", "pending"]))
            .values(status="failed", error="Interrupted by restart")
        )
        if result.rowcount:
            logger.info("Cleaned up %d stale scans from previous run", result.rowcount)
        await session.commit()
    start_scheduler()
    yield
    stop_scheduler()
    logger.info("Shutting down CardGather")


app = FastAPI(title="CardGather", lifespan=lifespan)

# Add Prometheus metrics instrumentation
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/health", "/metrics"],
).instrument(app).expose(app, endpoint="/metrics")

app.include_router(health.router)
app.include_router(scanner.router)
