"""
Session Recorder — folds one completed session into today's day bucket.

Single writer for buckets. Each call is one read-modify-write on the
(scope, date) key through AnalyticsStore.update_bucket; the latest snapshot
is merge-written before the key is released.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from app.config import settings
from app.models.analytics import (
    DailyBucket,
    INTENT_CATEGORIES,
    IntentCategory,
    SessionSummary,
)
from app.services.analytics.scope import AnalyticsScope, resolve_scope_key
from app.services.analytics.store import AnalyticsStore, get_analytics_store

logger = logging.getLogger(__name__)

# Exponential smoothing weights for learning efficiency
_EFFICIENCY_DECAY = 0.6
_EFFICIENCY_GAIN = 0.4


def today_key() -> str:
    """UTC calendar day as YYYY-MM-DD."""
    return datetime.now(timezone.utc).date().isoformat()


def next_learning_efficiency(previous: float, lead_score: float) -> float:
    """EMA of lead quality. lead_score is clamped to [0, 100]."""
    score = min(max(lead_score, 0.0), 100.0)
    return round(_EFFICIENCY_DECAY * previous + _EFFICIENCY_GAIN * score / 100, 3)


def most_common_category(bucket: DailyBucket) -> IntentCategory:
    """Highest intent count; ties keep the earlier category."""
    top, top_count = IntentCategory.LEAD_INQUIRY, 0
    for category in INTENT_CATEGORIES:
        count = bucket.intent_counts.get(category)
        if count > top_count:
            top, top_count = category, count
    return top


def conversion_rate(conversions: int, sessions: int, messages: int) -> float:
    """Conversions over sessions, or over messages when configured that way."""
    if settings.analytics_conversion_basis == "messages":
        denominator = messages
    else:
        denominator = sessions
    return round(conversions / max(denominator, 1), 2)


def fold_session(bucket: DailyBucket, summary: SessionSummary) -> DailyBucket:
    """Return a copy of bucket with summary applied and derived fields refreshed."""
    conv = summary.conversation
    message_count = len(conv.messages)
    lead = 1 if summary.is_lead else 0

    updated = bucket.model_copy(deep=True)
    updated.total_messages_today += message_count
    updated.new_leads_today += lead
    updated.response_samples += 1
    updated.response_time_total_ms += summary.response_time_ms
    updated.sentiment_samples += 1
    updated.sentiment_total += conv.sentiment_score
    updated.conversion_count += lead
    updated.intent_counts.increment(conv.intent_category)
    updated.response_type_counts.increment(conv.response_type)
    if conv.user_id not in updated.active_users:
        updated.active_users.append(conv.user_id)

    stats = updated.platform_breakdown.get(conv.platform)
    stats.messages += message_count
    stats.leads += lead
    stats.response_time_total_ms += summary.response_time_ms
    stats.response_samples += 1
    stats.sentiment_total += conv.sentiment_score
    stats.sentiment_samples += 1
    stats.conversion_count += lead

    platform_users = updated.active_users_by_platform.get(conv.platform)
    if conv.user_id not in platform_users:
        platform_users.append(conv.user_id)

    updated.learning_efficiency = next_learning_efficiency(
        updated.learning_efficiency, summary.lead_score
    )

    updated.most_common_category = most_common_category(updated)
    updated.avg_response_time = round(
        updated.response_time_total_ms / updated.response_samples / 1000, 1
    )
    updated.conversion_rate = conversion_rate(
        updated.conversion_count,
        updated.response_samples,
        updated.total_messages_today,
    )
    return updated


async def record_session(
    summary: SessionSummary,
    scope: AnalyticsScope | None = None,
    *,
    store: AnalyticsStore | None = None,
    day: date | None = None,
) -> DailyBucket:
    """Fold a completed session into the current day's bucket.

    Args:
        summary: The session produced by the reply engine.
        scope: Organisation scope; defaults to the configured one.
        store: Store override (tests); defaults to the configured backend.
        day: Bucket day override; defaults to today in UTC.

    Returns:
        The committed bucket.

    Raises:
        StorageUnavailable: The bucket could not be committed. The session
            was not recorded and the caller must retry or dead-letter it.
    """
    store = store or get_analytics_store()
    scope_key = resolve_scope_key(scope)
    date_key = day.isoformat() if day else today_key()

    async def mirror_latest(committed: DailyBucket) -> None:
        # Bucket is committed at this point; snapshot failures are not raised.
        try:
            await store.write_latest(scope_key, committed)
        except Exception as e:
            logger.warning("Latest snapshot write failed for %s: %s", scope_key, e)

    bucket = await store.update_bucket(
        scope_key,
        date_key,
        lambda current: fold_session(current, summary),
        after_commit=mirror_latest,
    )
    logger.debug(
        "Recorded %s session for %s on %s/%s (%d messages)",
        summary.conversation.platform.value,
        summary.conversation.user_id,
        scope_key,
        date_key,
        len(summary.conversation.messages),
    )
    return bucket
