# sourcing_service/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sourcing_service.api.error_handlers import register_error_handlers
from sourcing_service.api.v1.api import api_router
from sourcing_service.core.config import settings
from sourcing_service.core.kafka_producer import close_kafka_singleton
from sourcing_service.scheduler import init_scheduler, shutdown_scheduler, get_scheduler_status

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Sourcing service starting up...")
    if settings.SCHEDULER_ENABLED:
        init_scheduler()
    yield
    logger.info("Sourcing service shutting down...")
    if settings.SCHEDULER_ENABLED:
        shutdown_scheduler()
    close_kafka_singleton()


app = FastAPI(
    title="Sourcing Quote & Negotiation Service",
    version="1.0.0",
    description="""
        **B2B Quote & Negotiation Engine**

        ## Features

        * **Quotes**: Sellers submit itemized quotes against buyer RFQs
        * **Negotiation**: Bounded counter-offer rounds between buyer and seller
        * **Comparison**: Best-value scoring across competing quotes
        * **Sweeps**: Expiry and auto-conversion of stalled negotiations

        ## Authentication

        User endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        Endpoints under `/internal/` require the `X-Internal-Api-Key` header.
        """,
    lifespan=lifespan,
)

register_error_handlers(app)
app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"status": "Sourcing Service is running"}


@app.get("/health/scheduler")
def scheduler_health():
    return get_scheduler_status()
