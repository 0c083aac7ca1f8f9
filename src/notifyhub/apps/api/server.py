# src/notifyhub/apps/api/server.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from pydantic import BaseModel

from notifyhub import __version__
from notifyhub.apps.api import notifications
from notifyhub.services.bootstrap import Runtime, build_runtime
from notifyhub.services.settings import Settings

_log = logging.getLogger("notifyhub.api.server")


class HealthResponse(BaseModel):
    ok: bool
    version: str
    state: str


def create_app(runtime: Runtime | None = None, *, settings: Settings | None = None, start_supervisor: bool = True) -> FastAPI:
    """Build the FastAPI app around a runtime; one is built from settings when not given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rt = runtime or build_runtime(settings or Settings.from_sources())
        app.state.runtime = rt
        app.state.ingress = rt.ingress
        if start_supervisor:
            await rt.supervisor.start()
        try:
            yield
        finally:
            if start_supervisor:
                await rt.supervisor.stop()
            if runtime is None:
                await rt.aclose()

    app = FastAPI(title="notifyhub", version=__version__, lifespan=lifespan)
    app.include_router(notifications.router)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        rt = getattr(app.state, "runtime", None)
        state = rt.manager.state.value if rt is not None else "unknown"
        return HealthResponse(ok=True, version=__version__, state=state)

    return app
