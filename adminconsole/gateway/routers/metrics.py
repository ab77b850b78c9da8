from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from adminconsole.metrics.registry import METRICS

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def metrics_prometheus():
    return PlainTextResponse(METRICS.export_prom_text(), media_type="text/plain; version=0.0.4")
