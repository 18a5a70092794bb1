from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from stockledger.core.config import settings
from stockledger.core.errors import InventoryError
from stockledger.core.observability import (
    http_exception_handler,
    inventory_error_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from stockledger.db.session import engine
from stockledger.jobs.reservation_sweeper import ReservationSweeper
from stockledger.routers import analytics, inventory, reservations, transfers


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if settings.reservation_sweep_enabled:
        sweeper = ReservationSweeper()
        sweeper.start()
    app.state.reservation_sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Inventory ledger and reservation engine.\n\n"
        "Every request is scoped to one tenant through the `X-Tenant-ID` header. "
        "`X-Actor` names who made the change in the movement log and audit trail."
    ),
    lifespan=lifespan,
    swagger_ui_parameters={
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "inventory", "description": "Stock counters, movements, safety stock and channel buffers."},
        {"name": "reservations", "description": "Time-limited holds on stock for orders."},
        {"name": "orders", "description": "Order lifecycle signals mapped onto reservations."},
        {"name": "transfers", "description": "Stock transfers between locations and rebalancing suggestions."},
        {"name": "analytics", "description": "Low stock, velocity, forecast, aging and valuation reports."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(InventoryError, inventory_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(inventory.router)
app.include_router(reservations.router)
app.include_router(reservations.orders_router)
app.include_router(transfers.router)
app.include_router(analytics.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
