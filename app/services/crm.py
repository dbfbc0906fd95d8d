"""
CRM Lead Forwarding — push app-captured leads to the CRM webhook.

Fire-and-forget: failures are logged, never raised to the caller.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.config import settings
from app.models.analytics import LeadForwardRequest

logger = logging.getLogger(__name__)


def build_webhook_payload(lead: LeadForwardRequest) -> dict[str, Any]:
    """Lead fields (camelCase, unset dropped) plus source and crm block."""
    payload = lead.model_dump(mode="json", by_alias=True, exclude_none=True)
    payload["source"] = lead.source or lead.platform or "app"
    payload["crm"] = {
        "leadScore": lead.lead_score,
        "leadTier": lead.lead_tier,
        "scenario": settings.crm_scenario_id,
    }
    return payload


async def forward_lead(lead: LeadForwardRequest) -> None:
    """POST a lead to the configured CRM webhook."""
    webhook_url = settings.crm_webhook_url
    if not webhook_url:
        logger.debug("CRM forward skipped: no webhook configured")
        return

    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                webhook_url,
                json=build_webhook_payload(lead),
                timeout=settings.crm_timeout_seconds,
            )
            resp.raise_for_status()
        logger.info("CRM lead forwarded: %s", webhook_url)
    except Exception as e:
        logger.warning("CRM lead forward failed: %s", e)
