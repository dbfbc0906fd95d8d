"""
Analytics Models — Pydantic models for day buckets, session input and
dashboard / lead-insight payloads.

Persisted documents and API payloads use camelCase keys; Python code uses
snake_case attribute names.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# =============================================================================
# ENUMERATIONS
# =============================================================================


class Platform(str, Enum):
    WHATSAPP = "whatsapp"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    THREADS = "threads"
    LINKEDIN = "linkedin"
    WEB = "web"


class IntentCategory(str, Enum):
    LEAD_INQUIRY = "Lead Inquiry"
    SUPPORT = "Support"
    DEMO_BOOKING = "Demo Booking"
    GENERAL_CHAT = "General Chat"


class ResponseType(str, Enum):
    PRICING = "Pricing"
    ONBOARDING = "Onboarding"
    DEMO = "Demo"
    SUPPORT = "Support"
    GENERAL = "General"


LeadTier = Literal["hot", "warm", "cold"]

PLATFORMS: tuple[Platform, ...] = tuple(Platform)
INTENT_CATEGORIES: tuple[IntentCategory, ...] = tuple(IntentCategory)
RESPONSE_TYPES: tuple[ResponseType, ...] = tuple(ResponseType)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# FIXED-SHAPE RECORDS
# =============================================================================
# One named field per enum member. Field names are the lower-cased member
# names, aliases are the persisted keys.


class _FixedRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def get(self, key: Enum) -> Any:
        return getattr(self, key.name.lower())


class IntentCounts(_FixedRecord):
    lead_inquiry: int = Field(0, alias="Lead Inquiry")
    support: int = Field(0, alias="Support")
    demo_booking: int = Field(0, alias="Demo Booking")
    general_chat: int = Field(0, alias="General Chat")

    def increment(self, category: IntentCategory) -> None:
        setattr(self, category.name.lower(), self.get(category) + 1)

    def items(self) -> list[tuple[IntentCategory, int]]:
        return [(category, self.get(category)) for category in INTENT_CATEGORIES]


class ResponseTypeCounts(_FixedRecord):
    pricing: int = Field(0, alias="Pricing")
    onboarding: int = Field(0, alias="Onboarding")
    demo: int = Field(0, alias="Demo")
    support: int = Field(0, alias="Support")
    general: int = Field(0, alias="General")

    def increment(self, response_type: ResponseType) -> None:
        setattr(self, response_type.name.lower(), self.get(response_type) + 1)

    def items(self) -> list[tuple[ResponseType, int]]:
        return [(rt, self.get(rt)) for rt in RESPONSE_TYPES]


class PlatformStats(_CamelModel):
    """Running counters for one platform inside a day bucket."""

    messages: int = 0
    leads: int = 0
    response_time_total_ms: float = 0
    response_samples: int = 0
    sentiment_total: float = 0.0
    sentiment_samples: int = 0
    conversion_count: int = 0


class PlatformBreakdown(_FixedRecord):
    whatsapp: PlatformStats = Field(default_factory=PlatformStats)
    facebook: PlatformStats = Field(default_factory=PlatformStats)
    instagram: PlatformStats = Field(default_factory=PlatformStats)
    threads: PlatformStats = Field(default_factory=PlatformStats)
    linkedin: PlatformStats = Field(default_factory=PlatformStats)
    web: PlatformStats = Field(default_factory=PlatformStats)

    def items(self) -> list[tuple[Platform, PlatformStats]]:
        return [(platform, self.get(platform)) for platform in PLATFORMS]


class ActiveUsersByPlatform(_FixedRecord):
    whatsapp: list[str] = Field(default_factory=list)
    facebook: list[str] = Field(default_factory=list)
    instagram: list[str] = Field(default_factory=list)
    threads: list[str] = Field(default_factory=list)
    linkedin: list[str] = Field(default_factory=list)
    web: list[str] = Field(default_factory=list)


# =============================================================================
# DAY BUCKET
# =============================================================================


class DailyBucket(_CamelModel):
    """Per-day aggregate document. Missing counters read as zero."""

    date: str  # YYYY-MM-DD
    total_messages_today: int = 0
    new_leads_today: int = 0
    response_time_total_ms: float = 0
    response_samples: int = 0
    sentiment_total: float = 0.0
    sentiment_samples: int = 0
    conversion_count: int = 0
    intent_counts: IntentCounts = Field(default_factory=IntentCounts)
    response_type_counts: ResponseTypeCounts = Field(default_factory=ResponseTypeCounts)
    active_users: list[str] = Field(default_factory=list)
    active_users_by_platform: ActiveUsersByPlatform = Field(
        default_factory=ActiveUsersByPlatform
    )
    platform_breakdown: PlatformBreakdown = Field(default_factory=PlatformBreakdown)
    learning_efficiency: float = 0.0

    # Denormalized, recomputed on every write
    most_common_category: IntentCategory = IntentCategory.LEAD_INQUIRY
    avg_response_time: float = 0.0  # seconds
    conversion_rate: float = 0.0

    def to_document(self) -> dict[str, Any]:
        """Serialize with persisted (camelCase / display) keys."""
        return self.model_dump(mode="json", by_alias=True)


class LatestSnapshot(DailyBucket):
    """Mirror of the most recently written bucket for cheap "today" reads."""

    updated_at: datetime | None = None


# =============================================================================
# SESSION INPUT
# =============================================================================


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str = ""


class ConversationRecord(BaseModel):
    """Conversation as produced by the reply engine."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str | None = Field(None, alias="conversationId")
    user_id: str
    channel_user_id: str | None = None
    platform: Platform
    messages: list[ConversationMessage] = Field(default_factory=list)
    sentiment_score: float = 0.0
    intent_category: IntentCategory
    response_type: ResponseType
    created_at: str | None = None
    updated_at: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class SessionSummary(_CamelModel):
    """One completed conversation, folded once into today's bucket."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    conversation: ConversationRecord
    is_lead: bool = False
    response_time_ms: float = Field(0, ge=0)
    lead_score: float = 0


# =============================================================================
# DASHBOARD PAYLOAD
# =============================================================================


class ChartPoint(BaseModel):
    label: str
    value: int | float


class PlatformSeries(BaseModel):
    platform: Platform
    series: list[ChartPoint]


class DashboardSummary(_CamelModel):
    """KPI cards for today's bucket."""

    total_messages_today: int
    new_leads_today: int
    most_common_category: str
    avg_response_time: float
    conversion_rate: float
    avg_sentiment: float


class DashboardCharts(_CamelModel):
    daily_messages: list[ChartPoint]
    weekly_messages_by_platform: list[PlatformSeries]
    leads_by_platform: list[ChartPoint]


class PlatformMetric(_CamelModel):
    platform: Platform
    messages: int
    leads: int
    avg_response_time: float
    avg_sentiment: float
    conversion_rate: float


class DashboardPayload(_CamelModel):
    summary: DashboardSummary
    charts: DashboardCharts
    platform_metrics: list[PlatformMetric]
    category_breakdown: list[ChartPoint]
    active_users: int
    top_conversations: list[dict[str, Any]]
    learning_efficiency: float
    seeded: bool = False  # True when built from synthetic demo buckets


# =============================================================================
# LEAD INSIGHTS PAYLOAD
# =============================================================================


class FollowUpMetrics(_CamelModel):
    sent: int = 0
    pending: int = 0
    success_rate: float = 0.0


class OutreachMetrics(_CamelModel):
    sent: int = 0
    replies: int = 0
    reply_rate: float = 0.0


class RoiMetrics(_CamelModel):
    bookings: int = 0
    learning_efficiency: float = 0.0


class LeadInsightsPayload(_CamelModel):
    intent_breakdown: list[ChartPoint] = Field(default_factory=list)
    sentiment_buckets: list[ChartPoint] = Field(default_factory=list)
    lead_tiers: list[ChartPoint] = Field(default_factory=list)
    conversion_trend: list[ChartPoint] = Field(default_factory=list)
    response_mix: list[ChartPoint] = Field(default_factory=list)
    follow_up: FollowUpMetrics = Field(default_factory=FollowUpMetrics)
    outreach: OutreachMetrics = Field(default_factory=OutreachMetrics)
    roi: RoiMetrics = Field(default_factory=RoiMetrics)
    partial: bool = False
    failed_sources: list[str] = Field(default_factory=list)


# =============================================================================
# LEAD FORWARDING
# =============================================================================


class LeadForwardRequest(_CamelModel):
    """Lead pushed from the app to the CRM webhook."""

    phone_number: str | None = None
    intent_category: IntentCategory | None = None
    name: str | None = None
    email: str | None = Field(None, max_length=320)
    company: str | None = None
    interest_category: str | None = None
    platform: str = "app"
    source: str | None = None
    goal: str | None = None
    budget: str | None = None
    lead_score: float | None = None
    lead_tier: LeadTier | None = None
