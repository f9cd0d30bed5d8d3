"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import APIRouter
from fastapi.middleware.cors import CORSMiddleware

from src.config.settings import Settings, get_settings
from src.services.container import ReservationCore, build_core


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    Restores journaled appointments and starts the expiry reaper on
    startup; stops the reaper and flushes the journal on shutdown.

    Args:
        app: FastAPI application instance.

    Yields:
        Control to the running application.
    """
    core: ReservationCore = app.state.core
    await core.startup()
    yield
    await core.shutdown()
    if core.journal is not None:
        from src.db.session import dispose_engine

        await dispose_engine()


def create_app(
    settings: Settings | None = None,
    core: ReservationCore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to build from; loaded from env when omitted.
        core: Prebuilt reservation core (tests inject one with a fake clock).

    Returns:
        Configured FastAPI instance.
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="Slot Reservation",
        description="Appointment time-slot reservation core",
        version="0.1.0",
        lifespan=_lifespan,
    )
    app.state.core = core or build_core(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(_health_router())

    from src.api.appointments import router as appointments_router
    from src.api.realtime import ws_router

    app.include_router(appointments_router)
    app.include_router(ws_router)

    return app


def _health_router() -> APIRouter:
    """Create health check router.

    Returns:
        Router with health endpoints.
    """
    from fastapi import APIRouter

    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Return application health status.

        Returns:
            Dict with status key.
        """
        return {"status": "ok"}

    return router
