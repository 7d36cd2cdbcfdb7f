"""Operational HTTP surface: health and metrics endpoints.

Mount the router on any FastAPI app::

    app.include_router(create_router(engine), prefix="/notifications")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

if TYPE_CHECKING:
    from .engine import NotificationEngine


def create_router(engine: NotificationEngine) -> APIRouter:
    """Build an ``APIRouter`` bound to ``engine``.

    ``GET /health`` answers 503 while any component is down.
    """
    router = APIRouter(tags=["notifications"])

    @router.get("/health")
    async def health() -> JSONResponse:
        report = await engine.health()
        return JSONResponse(
            content=report.to_dict(),
            status_code=200 if report.healthy else 503,
        )

    @router.get("/metrics")
    async def metrics() -> dict[str, Any]:
        return engine.metrics_snapshot()

    @router.get("/metrics/prometheus")
    async def prometheus() -> Response:
        return Response(
            content=engine.metrics.render_prometheus(),
            media_type=CONTENT_TYPE_LATEST,
        )

    return router
