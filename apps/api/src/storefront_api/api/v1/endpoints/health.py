from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
        components["database"] = ComponentStatus(status="ready")
    except SQLAlchemyError as error:
        logger.warning("Readiness database probe failed", error=str(error))
        components["database"] = ComponentStatus(status="error", detail="Database unreachable")
        status = "error"

    engine = getattr(request.app.state, "loyalty_engine", None)
    if engine is None:
        components["loyalty_engine"] = ComponentStatus(status="error", detail="Loyalty engine not initialised")
        status = "error"
    else:
        components["loyalty_engine"] = ComponentStatus(
            status="ready",
            detail=f"{len(engine.tiers)} tiers configured",
        )

    notifier = getattr(request.app.state, "notification_sink", None)
    if notifier is None:
        components["notifications"] = ComponentStatus(status="disabled", detail="Loyalty notifications disabled via settings")
    else:
        components["notifications"] = ComponentStatus(status="ready")

    return ReadinessPayload(status=status, components=components)
