"""
Lead Insight Assembler — funnel, tier, sentiment and ROI metrics.

Seven bounded reads run concurrently via asyncio.gather:
  leads               → lead tiers
  conversations       → intent breakdown, response mix, sentiment buckets
  buckets (7 days)    → conversion trend, mean learning efficiency
  follow_ups_pending  → follow-up pending
  follow_up_logs      → follow-up sent
  outreach_logs       → outreach sent / replies
  bookings            → confirmed bookings

A failed read zeroes only the groups it feeds and marks the payload
partial. When a majority of reads fail, PartialDataError is raised with
the best-effort payload attached. Cancelling the call cancels every read.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from app.config import settings
from app.models.analytics import (
    ChartPoint,
    DailyBucket,
    FollowUpMetrics,
    LeadInsightsPayload,
    OutreachMetrics,
    RoiMetrics,
)
from app.services.analytics.exceptions import PartialDataError
from app.services.analytics.scope import AnalyticsScope, resolve_scope_key
from app.services.analytics.store import (
    BOOKINGS,
    CONVERSATIONS,
    FOLLOW_UP_LOGS,
    FOLLOW_UPS,
    LEADS,
    OUTREACH_LOGS,
    AnalyticsStore,
    get_analytics_store,
)

logger = logging.getLogger(__name__)

POSITIVE_THRESHOLD = 0.3
NEGATIVE_THRESHOLD = -0.3
DEFAULT_TIER = "warm"


def _points(counts: dict[str, int]) -> list[ChartPoint]:
    return [ChartPoint(label=label, value=value) for label, value in counts.items()]


def _rate(numerator: int, denominator: int) -> float:
    return round(min(numerator / max(denominator, 1), 1.0), 2)


def lead_tiers(leads: list[dict[str, Any]]) -> list[ChartPoint]:
    counts: dict[str, int] = {"hot": 0, "warm": 0, "cold": 0}
    for lead in leads:
        tier = lead.get("leadTier") or DEFAULT_TIER
        counts[tier] = counts.get(tier, 0) + 1
    return _points(counts)


def conversation_mix(
    conversations: list[dict[str, Any]],
) -> tuple[list[ChartPoint], list[ChartPoint], list[ChartPoint]]:
    """Intent breakdown, response mix and sentiment buckets."""
    intents: dict[str, int] = {}
    responses: dict[str, int] = {}
    sentiment = {"Positive": 0, "Neutral": 0, "Negative": 0}

    for conv in conversations:
        intent = conv.get("intent_category")
        if intent:
            intents[intent] = intents.get(intent, 0) + 1
        response_type = conv.get("response_type")
        if response_type:
            responses[response_type] = responses.get(response_type, 0) + 1

        score = conv.get("sentiment_score") or 0.0
        if score > POSITIVE_THRESHOLD:
            sentiment["Positive"] += 1
        elif score < NEGATIVE_THRESHOLD:
            sentiment["Negative"] += 1
        else:
            sentiment["Neutral"] += 1

    return _points(intents), _points(responses), _points(sentiment)


def conversion_trend(buckets: list[DailyBucket]) -> list[ChartPoint]:
    ordered = sorted(buckets, key=lambda b: b.date)
    return [ChartPoint(label=b.date[5:], value=b.new_leads_today) for b in ordered]


def mean_learning_efficiency(buckets: list[DailyBucket]) -> float:
    if not buckets:
        return 0.0
    total = sum(b.learning_efficiency for b in buckets)
    return round(total / len(buckets), 3)


def build_insights(
    *,
    leads: list[dict[str, Any]],
    conversations: list[dict[str, Any]],
    buckets: list[DailyBucket],
    follow_ups_pending: list[dict[str, Any]],
    follow_up_logs: list[dict[str, Any]],
    outreach_logs: list[dict[str, Any]],
    bookings: list[dict[str, Any]],
) -> LeadInsightsPayload:
    """Reduce the scanned record sets into the lead insight payload."""
    intent_breakdown, response_mix, sentiment_buckets = conversation_mix(conversations)

    follow_up_sent = len(follow_up_logs)
    follow_up_pending = len(follow_ups_pending)

    outreach_sent = sum(1 for log in outreach_logs if log.get("status") == "sent")
    outreach_replies = sum(1 for log in outreach_logs if log.get("replyAt"))

    return LeadInsightsPayload(
        intent_breakdown=intent_breakdown,
        sentiment_buckets=sentiment_buckets,
        lead_tiers=lead_tiers(leads),
        conversion_trend=conversion_trend(buckets),
        response_mix=response_mix,
        follow_up=FollowUpMetrics(
            sent=follow_up_sent,
            pending=follow_up_pending,
            success_rate=_rate(follow_up_sent, follow_up_sent + follow_up_pending),
        ),
        outreach=OutreachMetrics(
            sent=outreach_sent,
            replies=outreach_replies,
            reply_rate=_rate(outreach_replies, outreach_sent),
        ),
        roi=RoiMetrics(
            bookings=sum(1 for b in bookings if b.get("status") == "confirmed"),
            learning_efficiency=mean_learning_efficiency(buckets),
        ),
    )


async def get_lead_insights(
    scope: AnalyticsScope | None = None,
    *,
    store: AnalyticsStore | None = None,
) -> LeadInsightsPayload:
    """Run the seven scans concurrently and reduce them.

    Raises:
        PartialDataError: A majority of scans failed. The exception carries
            the best-effort payload.
    """
    store = store or get_analytics_store()
    scope_key = resolve_scope_key(scope)
    large = settings.analytics_scan_limit_large
    small = settings.analytics_scan_limit_small

    scans = {
        "leads": store.scan(LEADS, order_by="created_at", limit=large),
        "conversations": store.scan(CONVERSATIONS, order_by="created_at", limit=large),
        "buckets": store.recent_buckets(scope_key, settings.analytics_chart_days),
        "follow_ups_pending": store.scan(FOLLOW_UPS, eq={"status": "pending"}),
        "follow_up_logs": store.scan(FOLLOW_UP_LOGS, order_by="sentAt", limit=small),
        "outreach_logs": store.scan(OUTREACH_LOGS, order_by="createdAt", limit=small),
        "bookings": store.scan(BOOKINGS, order_by="createdAt", limit=small),
    }
    results = await asyncio.gather(*scans.values(), return_exceptions=True)

    data: dict[str, Any] = {}
    failed: list[str] = []
    for name, result in zip(scans, results):
        if isinstance(result, BaseException):
            logger.warning("Lead insight scan %s failed: %s", name, result)
            failed.append(name)
            data[name] = []
        else:
            logger.debug("Lead insight scan %s: %d rows", name, len(result))
            data[name] = result

    payload = build_insights(**data)
    if failed:
        payload.partial = True
        payload.failed_sources = failed
    if len(failed) > len(scans) // 2:
        logger.error("Lead insights unavailable: %d/%d scans failed", len(failed), len(scans))
        raise PartialDataError(failed, payload)
    return payload
