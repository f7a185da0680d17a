"""
Plan endpoint for Rampart.

Runs one orchestration for a posted manifest and returns the assembled
result. Nothing is deployed; the response is the plan of what would be.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from rampart.runtime import parse_manifest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["plan"])


class PlanRequest(BaseModel):
    """Body of a plan request."""

    manifest: dict[str, Any] = Field(..., description="Manifest document (JSON form)")
    environment: str | None = Field(default=None, description="Active environment (defaults to settings)")
    run_id: str | None = None


@router.post("/plan")
async def plan(body: PlanRequest, request: Request) -> dict[str, Any]:
    """
    Synthesize a manifest and return the result.

    Rampart errors are mapped to 422 by the application's exception handler.
    """
    orchestrator = request.app.state.orchestrator
    settings = request.app.state.settings

    manifest = parse_manifest(body.manifest, source="request")
    environment = body.environment or settings.environment

    logger.info(f"[plan] Planning service={manifest.service} environment={environment}")
    result = await orchestrator.run(manifest, environment, run_id=body.run_id)

    payload = result.to_dict()
    payload["report"] = result.render_report()
    return payload
