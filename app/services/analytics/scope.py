"""
Analytics Scope — resolves which organisation's buckets a call touches.

Buckets are keyed by (scope_key, date). Unscoped deployments use "global".
"""

from __future__ import annotations

from dataclasses import dataclass

from app.config import settings

GLOBAL_SCOPE = "global"


@dataclass(frozen=True)
class AnalyticsScope:
    org_id: str | None = None
    user_id: str | None = None
    scope_id: str | None = None


def _sanitize(value: str | None) -> str:
    if not value:
        return ""
    return value.strip().replace("/", "_").replace("\\", "_")


def resolve_scope_key(scope: AnalyticsScope | None = None) -> str:
    """Pick the scope key: explicit scope, then configured defaults, then global."""
    provided = ""
    if scope is not None:
        provided = _sanitize(scope.org_id or scope.scope_id or scope.user_id)
    return (
        provided
        or _sanitize(settings.analytics_org_id)
        or _sanitize(settings.analytics_user_id)
        or GLOBAL_SCOPE
    )
