"""
Dashboard Assembler — operational summary built from recent day buckets.

Reads the most recent buckets (date desc) and a small page of recent
conversations. With no buckets it serves seed data, or a zero-filled
payload when seeding is disabled. Never writes.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

from app.config import settings
from app.models.analytics import (
    ChartPoint,
    DailyBucket,
    DashboardCharts,
    DashboardPayload,
    DashboardSummary,
    IntentCategory,
    Platform,
    PLATFORMS,
    PlatformMetric,
    PlatformSeries,
    PlatformStats,
)
from app.services.analytics.recorder import conversion_rate
from app.services.analytics.scope import AnalyticsScope, resolve_scope_key
from app.services.analytics.seed import seed_buckets, seed_conversations
from app.services.analytics.store import (
    CONVERSATIONS,
    AnalyticsStore,
    get_analytics_store,
)

logger = logging.getLogger(__name__)


def _avg_seconds(total_ms: float, samples: int) -> float:
    return round(total_ms / max(samples, 1) / 1000, 1)


def _avg_sentiment(total: float, samples: int) -> float:
    return round(total / max(samples, 1), 1)


def _chart(
    buckets: list[DailyBucket], value: Callable[[DailyBucket], float]
) -> list[ChartPoint]:
    """Ascending-date series labelled MM-DD."""
    ordered = sorted(buckets, key=lambda b: b.date)
    return [ChartPoint(label=b.date[5:], value=value(b)) for b in ordered]


def _platform_metric(platform: Platform, stats: PlatformStats) -> PlatformMetric:
    """Per-platform rates use that platform's own denominators."""
    return PlatformMetric(
        platform=platform,
        messages=stats.messages,
        leads=stats.leads,
        avg_response_time=_avg_seconds(
            stats.response_time_total_ms, stats.response_samples
        ),
        avg_sentiment=_avg_sentiment(stats.sentiment_total, stats.sentiment_samples),
        conversion_rate=conversion_rate(
            stats.conversion_count, stats.response_samples, stats.messages
        ),
    )


def build_payload(
    buckets: list[DailyBucket],
    top_conversations: list[dict[str, Any]],
    *,
    seeded: bool = False,
) -> DashboardPayload:
    """Assemble the dashboard from buckets ordered newest first (non-empty)."""
    latest = buckets[0]
    window = buckets[: settings.analytics_chart_days]

    summary = DashboardSummary(
        total_messages_today=latest.total_messages_today,
        new_leads_today=latest.new_leads_today,
        most_common_category=latest.most_common_category.value,
        avg_response_time=latest.avg_response_time,
        conversion_rate=latest.conversion_rate,
        avg_sentiment=_avg_sentiment(latest.sentiment_total, latest.sentiment_samples),
    )

    charts = DashboardCharts(
        daily_messages=_chart(window, lambda b: b.total_messages_today),
        weekly_messages_by_platform=[
            PlatformSeries(
                platform=platform,
                series=_chart(
                    window, lambda b, p=platform: b.platform_breakdown.get(p).messages
                ),
            )
            for platform in PLATFORMS
        ],
        leads_by_platform=[
            ChartPoint(label=platform.value, value=stats.leads)
            for platform, stats in latest.platform_breakdown.items()
        ],
    )

    return DashboardPayload(
        summary=summary,
        charts=charts,
        platform_metrics=[
            _platform_metric(platform, stats)
            for platform, stats in latest.platform_breakdown.items()
        ],
        category_breakdown=[
            ChartPoint(label=category.value, value=count)
            for category, count in latest.intent_counts.items()
        ],
        active_users=len(set(latest.active_users)),
        top_conversations=top_conversations,
        learning_efficiency=latest.learning_efficiency,
        seeded=seeded,
    )


def empty_payload(today: date) -> DashboardPayload:
    """Zero-filled payload over the last chart window, used when seeding is off."""
    days = settings.analytics_chart_days
    labels = [
        (today - timedelta(days=days - 1 - offset)).isoformat()[5:]
        for offset in range(days)
    ]

    def _zeros() -> list[ChartPoint]:
        return [ChartPoint(label=label, value=0) for label in labels]

    return DashboardPayload(
        summary=DashboardSummary(
            total_messages_today=0,
            new_leads_today=0,
            most_common_category=IntentCategory.GENERAL_CHAT.value,
            avg_response_time=0.0,
            conversion_rate=0.0,
            avg_sentiment=0.0,
        ),
        charts=DashboardCharts(
            daily_messages=_zeros(),
            weekly_messages_by_platform=[
                PlatformSeries(platform=platform, series=_zeros())
                for platform in PLATFORMS
            ],
            leads_by_platform=[
                ChartPoint(label=platform.value, value=0) for platform in PLATFORMS
            ],
        ),
        platform_metrics=[
            _platform_metric(platform, PlatformStats()) for platform in PLATFORMS
        ],
        category_breakdown=[],
        active_users=0,
        top_conversations=[],
        learning_efficiency=0.0,
    )


async def _top_conversations(
    store: AnalyticsStore, today: date, *, allow_seed: bool
) -> list[dict[str, Any]]:
    try:
        rows = await store.scan(
            CONVERSATIONS,
            order_by="created_at",
            limit=settings.analytics_top_conversations,
        )
    except Exception as e:
        logger.warning("Top conversations fetch failed: %s", e)
        rows = []
    if not rows and allow_seed:
        return seed_conversations(today)
    return rows


async def get_stats(
    scope: AnalyticsScope | None = None,
    *,
    store: AnalyticsStore | None = None,
    today: date | None = None,
) -> DashboardPayload:
    """Build the operational dashboard for a scope."""
    store = store or get_analytics_store()
    scope_key = resolve_scope_key(scope)
    today = today or datetime.now(timezone.utc).date()

    buckets = await store.recent_buckets(scope_key, settings.analytics_dashboard_days)
    seeded = False
    if not buckets:
        if not settings.analytics_seed_fallback:
            logger.info("No analytics buckets for %s, returning empty payload", scope_key)
            return empty_payload(today)
        logger.warning("No analytics buckets for %s, serving seed data", scope_key)
        buckets = seed_buckets(today)
        seeded = True

    top = await _top_conversations(
        store, today, allow_seed=settings.analytics_seed_fallback
    )
    return build_payload(buckets, top, seeded=seeded)
