"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the engine services, registers routers, and runs startup
initialization (schema creation and the expired-hold sweeper).

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.availability_controller import router as availability_router
from backend.controllers.hold_controller import router as hold_router
from backend.domain.catalog import RoomCatalog
from backend.domain.constraints import validate_engine_config
from backend.repository.availability_cache import AvailabilityCache
from backend.repository.data_repository import DataRepository
from backend.repository.kv_store import KeyValueStore, build_key_value_store
from backend.services.allocation_service import RoomAllocationService
from backend.services.availability_service import AvailabilityService
from backend.services.booking_service import BookingWorkflowService
from backend.services.hold_service import HoldService, HoldSweeper
from backend.services.pricing_service import PricingService
from backend.utils.clock import Clock, SystemClock
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    store: Optional[KeyValueStore] = None,
    start_sweeper: bool = True,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    No global singletons; every dependency is traceable from this function.
    """
    settings = settings or get_settings()
    validate_engine_config(settings)
    clock = clock or SystemClock()
    catalog = RoomCatalog()

    # --- Shared state (reservation store, key-value store, cache) ---
    repository = DataRepository(settings)
    store = store or build_key_value_store(settings, clock)
    availability_cache = AvailabilityCache(store, settings)

    # --- Services (business logic, no direct DB access) ---
    hold_service = HoldService(
        store=store,
        repository=repository,
        availability_cache=availability_cache,
        catalog=catalog,
        settings=settings,
        clock=clock,
    )
    availability_service = AvailabilityService(
        repository=repository,
        hold_service=hold_service,
        cache=availability_cache,
        catalog=catalog,
        settings=settings,
        clock=clock,
    )
    allocation_service = RoomAllocationService(
        availability_service=availability_service,
        settings=settings,
    )
    pricing_service = PricingService(settings=settings)
    booking_service = BookingWorkflowService(
        repository=repository,
        store=store,
        availability_cache=availability_cache,
        availability_service=availability_service,
        allocation_service=allocation_service,
        pricing_service=pricing_service,
        hold_service=hold_service,
        catalog=catalog,
        settings=settings,
    )
    sweeper = HoldSweeper(hold_service, settings.hold_sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, start_sweeper=start_sweeper)
        yield
        _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(availability_router)
    app.include_router(hold_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.availability_cache = availability_cache
    app.state.hold_service = hold_service
    app.state.availability_service = availability_service
    app.state.allocation_service = allocation_service
    app.state.pricing_service = pricing_service
    app.state.booking_service = booking_service
    app.state.sweeper = sweeper

    return app


def _startup(app: FastAPI, start_sweeper: bool = True) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before any availability query reads reservations.
      2. The sweeper starts last so its first tick sees an initialized store.
    """
    repository: DataRepository = app.state.repository
    sweeper: HoldSweeper = app.state.sweeper

    logger.info("Startup: initializing reservation schema")
    repository.initialize_database()

    if start_sweeper:
        logger.info("Startup: starting expired-hold sweeper")
        sweeper.start()

    logger.info("Startup complete | engine ready")


def _shutdown(app: FastAPI) -> None:
    sweeper: HoldSweeper = app.state.sweeper
    if sweeper.running:
        sweeper.stop(timeout=5.0)


# Module-level app object for uvicorn
app = create_app()
