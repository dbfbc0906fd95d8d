"""Analytics exception hierarchy."""

from __future__ import annotations

from typing import Any


class AnalyticsError(Exception):
    """Base exception for the analytics engine."""


class WriteConflict(AnalyticsError):
    """A bucket compare-and-swap lost a race. Retried by the store."""

    def __init__(self, scope_key: str, date_key: str) -> None:
        self.scope_key = scope_key
        self.date_key = date_key
        super().__init__(f"Write conflict on bucket {scope_key}/{date_key}")


class StorageUnavailable(AnalyticsError):
    """A bucket commit could not be completed after the store's retries."""

    def __init__(self, scope_key: str, date_key: str, reason: str = "") -> None:
        self.scope_key = scope_key
        self.date_key = date_key
        self.reason = reason
        message = f"Bucket {scope_key}/{date_key} could not be committed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PartialDataError(AnalyticsError):
    """Too many lead-insight scans failed to produce a trustworthy payload.

    Attributes:
        failed: Names of the scans that raised.
        payload: Best-effort payload assembled from the scans that succeeded.
    """

    def __init__(self, failed: list[str], payload: Any = None) -> None:
        self.failed = failed
        self.payload = payload
        super().__init__(f"Lead insight scans failed: {', '.join(failed)}")
