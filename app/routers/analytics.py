"""
Analytics Router — dashboard reads, session ingestion and lead forwarding.

Endpoints:
  GET  /analytics/stats           — Operational dashboard
  GET  /analytics/leads           — Lead insight funnel
  GET  /analytics/latest          — Most recently written day bucket
  POST /analytics/sessions        — Record a completed session
  POST /analytics/leads/forward   — Forward an app lead to the CRM
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from app.models.analytics import (
    DashboardPayload,
    LatestSnapshot,
    LeadForwardRequest,
    LeadInsightsPayload,
    SessionSummary,
)
from app.services.analytics.dashboard import get_stats
from app.services.analytics.exceptions import PartialDataError, StorageUnavailable
from app.services.analytics.insights import get_lead_insights
from app.services.analytics.recorder import record_session
from app.services.analytics.scope import AnalyticsScope, resolve_scope_key
from app.services.analytics.store import get_analytics_store
from app.services.crm import forward_lead

logger = logging.getLogger(__name__)

router = APIRouter()


def _scope(scope: str | None) -> AnalyticsScope | None:
    return AnalyticsScope(scope_id=scope) if scope else None


# =============================================================================
# READS
# =============================================================================


@router.get("/stats")
async def stats(scope: str | None = Query(default=None)) -> DashboardPayload:
    """Dashboard summary, charts and platform metrics."""
    try:
        return await get_stats(_scope(scope))
    except Exception:
        logger.exception("Analytics: failed to build dashboard")
        raise HTTPException(status_code=500, detail="Failed to fetch stats")


@router.get("/leads")
async def lead_insights(scope: str | None = Query(default=None)) -> LeadInsightsPayload:
    """Lead tiers, sentiment, follow-up, outreach and ROI metrics."""
    try:
        return await get_lead_insights(_scope(scope))
    except PartialDataError as e:
        raise HTTPException(
            status_code=503,
            detail={"message": "Lead insights unavailable", "failedSources": e.failed},
        )
    except Exception:
        logger.exception("Analytics: failed to build lead insights")
        raise HTTPException(status_code=500, detail="Failed to fetch lead insights")


@router.get("/latest")
async def latest(scope: str | None = Query(default=None)) -> LatestSnapshot:
    """Snapshot of the last bucket written, without knowing today's date."""
    try:
        snapshot = await get_analytics_store().latest(resolve_scope_key(_scope(scope)))
    except Exception:
        logger.exception("Analytics: failed to read latest snapshot")
        raise HTTPException(status_code=500, detail="Failed to fetch latest snapshot")
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No sessions recorded yet")
    return snapshot


# =============================================================================
# INGESTION
# =============================================================================


@router.post("/sessions", status_code=202)
async def ingest_session(
    summary: SessionSummary,
    scope: str | None = Query(default=None),
) -> dict[str, Any]:
    """Fold a completed session into today's bucket."""
    try:
        await record_session(summary, _scope(scope))
    except StorageUnavailable as e:
        logger.error("Analytics: session not recorded: %s", e)
        raise HTTPException(status_code=503, detail="Analytics storage unavailable")
    return {"ok": True}


@router.post("/leads/forward", status_code=202)
async def forward(body: LeadForwardRequest) -> dict[str, Any]:
    """Forward an app-captured lead to the CRM webhook."""
    if not body.phone_number or not body.intent_category:
        raise HTTPException(
            status_code=400, detail="phoneNumber and intentCategory are required"
        )
    await forward_lead(body)
    return {"ok": True}
