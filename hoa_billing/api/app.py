"""FastAPI application for the billing engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from hoa_billing import __version__
from hoa_billing.api.billing import router as billing_router
from hoa_billing.models import Base
from hoa_billing.services import engine
from hoa_billing.services.bill_cache import BillCache

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables (documents, meter readings, audit log) on startup."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")
    yield
    app.state.bill_cache.clear()


app = FastAPI(
    title="HOA Billing",
    description="Billing, payment distribution and transaction reversal for HOA back offices",
    version=__version__,
    lifespan=lifespan,
)

# One bill cache per application instance
app.state.bill_cache = BillCache()

app.include_router(billing_router)


# Register health check endpoint
@app.get("/health")
def health_check() -> dict:
    """Health check endpoint for monitoring."""
    return {"status": "ok"}
