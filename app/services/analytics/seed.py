"""
Seed Data — deterministic demo buckets and conversations for cold starts.

Pure functions of the reference day. Every seeded bucket satisfies the
same reconciliation rules as a recorded one: totals equal the sum of the
platform split and intent counts sum to the session count.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from app.models.analytics import (
    ConversationMessage,
    ConversationRecord,
    DailyBucket,
    INTENT_CATEGORIES,
    IntentCategory,
    Platform,
    PLATFORMS,
    RESPONSE_TYPES,
    ResponseType,
)
from app.services.analytics.recorder import conversion_rate, most_common_category

SEED_DAYS = 7

# Share of daily volume per platform (sums to 1)
_PLATFORM_WEIGHTS: dict[Platform, float] = {
    Platform.WHATSAPP: 0.30,
    Platform.FACEBOOK: 0.15,
    Platform.INSTAGRAM: 0.20,
    Platform.THREADS: 0.10,
    Platform.LINKEDIN: 0.15,
    Platform.WEB: 0.10,
}
_INTENT_SHARES = (0.42, 0.22, 0.24, 0.12)
_RESPONSE_SHARES = (0.32, 0.18, 0.28, 0.14, 0.08)
_SEED_SENTIMENT = 0.6


def _split(total: int, shares: tuple[float, ...]) -> list[int]:
    """Split total by shares; rounding remainder goes to the first slot."""
    parts = [round(total * share) for share in shares]
    parts[0] += total - sum(parts)
    return parts


def _seed_bucket(day: date, index: int) -> DailyBucket:
    base = 60 + index * 4
    leads = 10 + index % 4
    avg_response_ms = (38 + index * 1.8) * 1000
    users = [f"seed-{day.isoformat()}-{n}" for n in range(25 + index * 3)]

    bucket = DailyBucket(date=day.isoformat())
    for position, platform in enumerate(PLATFORMS):
        weight = _PLATFORM_WEIGHTS[platform]
        messages = round(base * weight)
        platform_leads = round(leads * weight)

        stats = bucket.platform_breakdown.get(platform)
        stats.messages = messages
        stats.leads = platform_leads
        stats.response_samples = messages
        stats.response_time_total_ms = messages * avg_response_ms
        stats.sentiment_samples = messages
        stats.sentiment_total = round(messages * _SEED_SENTIMENT, 2)
        stats.conversion_count = platform_leads

        bucket.active_users_by_platform.get(platform).extend(
            users[position :: len(PLATFORMS)]
        )

    platforms = [stats for _, stats in bucket.platform_breakdown.items()]
    bucket.total_messages_today = sum(s.messages for s in platforms)
    bucket.new_leads_today = sum(s.leads for s in platforms)
    bucket.conversion_count = bucket.new_leads_today
    bucket.response_samples = sum(s.response_samples for s in platforms)
    bucket.response_time_total_ms = sum(s.response_time_total_ms for s in platforms)
    bucket.sentiment_samples = sum(s.sentiment_samples for s in platforms)
    bucket.sentiment_total = round(sum(s.sentiment_total for s in platforms), 2)
    bucket.active_users = users

    sessions = bucket.response_samples
    for category, count in zip(INTENT_CATEGORIES, _split(sessions, _INTENT_SHARES)):
        setattr(bucket.intent_counts, category.name.lower(), count)
    for response_type, count in zip(RESPONSE_TYPES, _split(sessions, _RESPONSE_SHARES)):
        setattr(bucket.response_type_counts, response_type.name.lower(), count)

    bucket.learning_efficiency = round(0.55 + index * 0.03, 3)
    bucket.most_common_category = most_common_category(bucket)
    bucket.avg_response_time = round(
        bucket.response_time_total_ms / max(sessions, 1) / 1000, 1
    )
    bucket.conversion_rate = conversion_rate(
        bucket.conversion_count, sessions, bucket.total_messages_today
    )
    return bucket


def seed_buckets(today: date) -> list[DailyBucket]:
    """Seven demo buckets ending at today, newest first."""
    buckets = [
        _seed_bucket(today - timedelta(days=SEED_DAYS - 1 - index), index)
        for index in range(SEED_DAYS)
    ]
    return list(reversed(buckets))


def seed_conversations(today: date) -> list[dict[str, Any]]:
    """Two sample conversation records, newest first."""
    day_1 = (today - timedelta(days=1)).isoformat()
    day_2 = (today - timedelta(days=2)).isoformat()
    records = [
        ConversationRecord(
            conversation_id="sample-convo-1",
            user_id="2348012345678",
            channel_user_id="2348012345678",
            platform=Platform.WHATSAPP,
            sentiment_score=0.8,
            intent_category=IntentCategory.LEAD_INQUIRY,
            response_type=ResponseType.PRICING,
            created_at=day_1,
            updated_at=day_1,
            meta={
                "name": "Adaobi",
                "company": "GrowthLabs",
                "email": "adaobi@growthlabs.io",
                "interestCategory": "AI CRM",
                "isLead": True,
                "leadScore": 88,
                "leadTier": "hot",
            },
            messages=[
                ConversationMessage(
                    role="user",
                    content=(
                        "Hi, I need pricing for your AI CRM for GrowthLabs. "
                        "Email me at adaobi@growthlabs.io"
                    ),
                    timestamp=day_1,
                ),
                ConversationMessage(
                    role="assistant",
                    content=(
                        "Hi Adaobi! Our AI CRM plans start at $499/mo and include "
                        "lead capture automations. Want me to pencil a demo?"
                    ),
                    timestamp=day_1,
                ),
            ],
        ),
        ConversationRecord(
            conversation_id="sample-convo-2",
            user_id="447700900123",
            channel_user_id="447700900123",
            platform=Platform.LINKEDIN,
            sentiment_score=0.5,
            intent_category=IntentCategory.DEMO_BOOKING,
            response_type=ResponseType.DEMO,
            created_at=day_2,
            updated_at=day_2,
            meta={
                "name": "Marcus",
                "company": "Brightline Media",
                "email": "marcus@brightline.agency",
                "interestCategory": "Lead Generation",
                "isLead": True,
                "leadScore": 72,
                "leadTier": "warm",
            },
            messages=[
                ConversationMessage(
                    role="user",
                    content=(
                        "Can we book a demo this week to see how your chatbot "
                        "handles cold leads?"
                    ),
                    timestamp=day_2,
                ),
                ConversationMessage(
                    role="assistant",
                    content=(
                        "Absolutely! I can hold a 20-min demo slot for you. "
                        "Are you free Thursday at 10am GMT?"
                    ),
                    timestamp=day_2,
                ),
            ],
        ),
    ]
    return [record.model_dump(mode="json", by_alias=True) for record in records]
