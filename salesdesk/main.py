import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import (
    blocks,
    calculator,
    contracts,
    deals,
    documents,
    history,
    notifications,
    reservation_forms,
    thresholds,
    units,
)
from .config import Base, SessionLocal, engine, settings
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .services.context import build_context
from .services.unit_blocks import expire_due
from .utils.pdf_utils import shutdown_renderer

logger = logging.getLogger(__name__)

configure_logging(settings.log_level, settings.log_json)

app = FastAPI(title="Sales Desk - Pricing & Offer Workflow")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.on_event("startup")
def startup() -> None:
    # Dev convenience; production schemas are created ahead of time.
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        expired = expire_due(build_context(session))
        if expired:
            logger.info("Expired %s overdue unit block(s) at startup", len(expired))


app.include_router(calculator.router, tags=["calculator"])
app.include_router(deals.router, prefix="/deals", tags=["deals"])
app.include_router(blocks.router, prefix="/blocks", tags=["blocks"])
app.include_router(reservation_forms.router, prefix="/reservation-forms", tags=["reservation-forms"])
app.include_router(contracts.router, prefix="/contracts", tags=["contracts"])
app.include_router(units.router, prefix="/units", tags=["units"])
app.include_router(thresholds.router, prefix="/thresholds", tags=["thresholds"])
app.include_router(documents.router, prefix="/documents", tags=["documents"])
app.include_router(history.router, prefix="/history", tags=["history"])
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.on_event("shutdown")
def shutdown() -> None:
    shutdown_renderer()
