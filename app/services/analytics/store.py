"""
Analytics Store — persistence for day buckets, the latest snapshot and the
record sets the assemblers scan.

Backends:
  memory   — in-process dicts guarded by per-(scope, date) asyncio locks.
             Tests and local development.
  supabase — versioned bucket rows. Writers read the row, apply the
             mutation and swap it in with .eq("version", expected); a
             lost race or a failed connection is retried, exhausted
             retries raise StorageUnavailable.

Every bucket write is a pure read-modify-write: the mutation receives a
fresh copy of the stored bucket and may be re-run on conflict. The
after_commit hook runs while the key lock is still held, so snapshot
writes land in commit order. Snapshots older than the stored one
(earlier day, or fewer sessions on the same day) are refused.
"""

from __future__ import annotations

import asyncio
import logging
import random
import weakref
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx
from postgrest.exceptions import APIError

from app.config import settings
from app.models.analytics import DailyBucket, LatestSnapshot
from app.services.analytics.exceptions import StorageUnavailable, WriteConflict
from app.services.supabase import get_supabase_client

logger = logging.getLogger(__name__)

# Supabase tables
BUCKETS_TABLE = "analytics_daily_buckets"
LATEST_TABLE = "analytics_latest"

# Record sets owned by other services, scanned read-only
CONVERSATIONS = "conversations"
LEADS = "leads"
FOLLOW_UPS = "follow_ups"
FOLLOW_UP_LOGS = "follow_up_logs"
OUTREACH_LOGS = "outreach_logs"
BOOKINGS = "scheduler_bookings"

_UNIQUE_VIOLATION = "23505"

# Failures raised before the request reaches the server; safe to retry
_CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)

BucketMutation = Callable[[DailyBucket], DailyBucket]
CommitHook = Callable[[DailyBucket], Awaitable[None]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def snapshot_stamp(bucket: DailyBucket) -> str:
    """Sortable commit position: bucket day, then sessions folded that day."""
    return f"{bucket.date}:{bucket.response_samples:010d}"


class _KeyLocks:
    """One asyncio.Lock per (scope, date) bucket key.

    Locks are held weakly and disappear once no writer references them.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def get(self, scope_key: str, date_key: str) -> asyncio.Lock:
        key = (scope_key, date_key)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class AnalyticsStore(ABC):
    """Keyed document store for buckets plus bounded scans of record sets."""

    @abstractmethod
    async def update_bucket(
        self,
        scope_key: str,
        date_key: str,
        mutate: BucketMutation,
        *,
        after_commit: CommitHook | None = None,
    ) -> DailyBucket:
        """Atomically apply mutate to the bucket and return the committed value.

        after_commit is awaited with the committed bucket before the key
        lock is released. Its exceptions propagate to the caller.

        Raises:
            StorageUnavailable: The commit failed after the store's retries.
        """

    @abstractmethod
    async def write_latest(self, scope_key: str, bucket: DailyBucket) -> None:
        """Merge-write the latest snapshot with a store-assigned timestamp.

        A bucket older than the stored snapshot is ignored.
        """

    @abstractmethod
    async def latest(self, scope_key: str) -> LatestSnapshot | None:
        ...

    @abstractmethod
    async def recent_buckets(self, scope_key: str, limit: int) -> list[DailyBucket]:
        """Most recent buckets, date descending."""

    @abstractmethod
    async def scan(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        limit: int | None = None,
        eq: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Rows of a record set, ordered by order_by descending."""


# =============================================================================
# MEMORY BACKEND
# =============================================================================


class MemoryAnalyticsStore(AnalyticsStore):
    """In-process store. Documents are stored serialized so callers never share state."""

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._latest: dict[str, dict[str, Any]] = {}
        self._collections: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self._locks = _KeyLocks()

    async def update_bucket(
        self,
        scope_key: str,
        date_key: str,
        mutate: BucketMutation,
        *,
        after_commit: CommitHook | None = None,
    ) -> DailyBucket:
        async with self._locks.get(scope_key, date_key):
            doc = self._buckets[scope_key].get(date_key)
            current = (
                DailyBucket.model_validate(doc) if doc else DailyBucket(date=date_key)
            )
            # Yield between read and write like a networked backend would
            await asyncio.sleep(0)
            updated = mutate(current)
            self._buckets[scope_key][date_key] = updated.to_document()
            if after_commit is not None:
                await after_commit(updated)
            return updated

    async def write_latest(self, scope_key: str, bucket: DailyBucket) -> None:
        stored = self._latest.get(scope_key)
        stamp = snapshot_stamp(bucket)
        if stored and snapshot_stamp(DailyBucket.model_validate(stored)) > stamp:
            logger.debug("Stale snapshot for %s ignored (%s)", scope_key, stamp)
            return
        merged = dict(stored or {})
        merged.update(bucket.to_document())
        merged["updatedAt"] = _now().isoformat()
        self._latest[scope_key] = merged

    async def latest(self, scope_key: str) -> LatestSnapshot | None:
        doc = self._latest.get(scope_key)
        return LatestSnapshot.model_validate(doc) if doc else None

    async def recent_buckets(self, scope_key: str, limit: int) -> list[DailyBucket]:
        docs = self._buckets.get(scope_key, {})
        dates = sorted(docs, reverse=True)[:limit]
        return [DailyBucket.model_validate(docs[d]) for d in dates]

    async def scan(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        limit: int | None = None,
        eq: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        rows = [dict(row) for row in self._collections.get(collection, [])]
        if eq:
            rows = [r for r in rows if all(r.get(k) == v for k, v in eq.items())]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def insert(self, collection: str, row: dict[str, Any]) -> None:
        """Add a row to a record set."""
        self._collections[collection].append(dict(row))


# =============================================================================
# SUPABASE BACKEND
# =============================================================================


class SupabaseAnalyticsStore(AnalyticsStore):
    """Supabase-backed store with optimistic concurrency on bucket rows.

    Bucket rows: (scope, date) unique, version int, data jsonb, updated_at.
    Latest rows: scope unique, date, stamp text, data jsonb, updated_at.
    """

    def __init__(self, max_retries: int | None = None) -> None:
        self._max_retries = max_retries or settings.analytics_store_max_retries
        # Serializes writers inside this process; the version check covers the rest
        self._locks = _KeyLocks()

    async def update_bucket(
        self,
        scope_key: str,
        date_key: str,
        mutate: BucketMutation,
        *,
        after_commit: CommitHook | None = None,
    ) -> DailyBucket:
        async with self._locks.get(scope_key, date_key):
            committed = await self._commit(scope_key, date_key, mutate)
            if after_commit is not None:
                await after_commit(committed)
            return committed

    async def _commit(
        self, scope_key: str, date_key: str, mutate: BucketMutation
    ) -> DailyBucket:
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                return await self._compare_and_swap(scope_key, date_key, mutate)
            except (WriteConflict, *_CONNECT_ERRORS) as e:
                last_error = e
                logger.warning(
                    "Bucket write on %s/%s not applied (attempt %d/%d): %s",
                    scope_key,
                    date_key,
                    attempt,
                    self._max_retries,
                    e,
                )
                await asyncio.sleep(random.uniform(0.01, 0.05) * attempt)
            except Exception as e:
                logger.error(
                    "Bucket commit failed for %s/%s: %s", scope_key, date_key, e
                )
                raise StorageUnavailable(scope_key, date_key, str(e)) from e

        logger.error(
            "Bucket %s/%s not committed after %d attempts",
            scope_key,
            date_key,
            self._max_retries,
        )
        raise StorageUnavailable(
            scope_key,
            date_key,
            f"{self._max_retries} attempts exhausted, last error: {last_error}",
        )

    async def _compare_and_swap(
        self, scope_key: str, date_key: str, mutate: BucketMutation
    ) -> DailyBucket:
        sb = await get_supabase_client()
        result = await (
            sb.table(BUCKETS_TABLE)
            .select("version, data")
            .eq("scope", scope_key)
            .eq("date", date_key)
            .limit(1)
            .execute()
        )
        rows: list[dict[str, Any]] = result.data or []

        if rows:
            version = rows[0].get("version") or 0
            current = DailyBucket.model_validate(rows[0].get("data") or {"date": date_key})
        else:
            version = 0
            current = DailyBucket(date=date_key)

        updated = mutate(current)
        row = {
            "scope": scope_key,
            "date": date_key,
            "version": version + 1,
            "data": updated.to_document(),
            "updated_at": _now().isoformat(),
        }

        if not rows:
            try:
                await sb.table(BUCKETS_TABLE).insert(row).execute()
            except APIError as e:
                if e.code == _UNIQUE_VIOLATION:
                    raise WriteConflict(scope_key, date_key) from e
                raise
            return updated

        swapped = await (
            sb.table(BUCKETS_TABLE)
            .update(row)
            .eq("scope", scope_key)
            .eq("date", date_key)
            .eq("version", version)
            .execute()
        )
        if not swapped.data:
            raise WriteConflict(scope_key, date_key)
        return updated

    async def write_latest(self, scope_key: str, bucket: DailyBucket) -> None:
        sb = await get_supabase_client()
        now = _now().isoformat()
        stamp = snapshot_stamp(bucket)
        row = {
            "scope": scope_key,
            "date": bucket.date,
            "stamp": stamp,
            "data": {**bucket.to_document(), "updatedAt": now},
            "updated_at": now,
        }

        # Only overwrite an older snapshot
        replaced = await (
            sb.table(LATEST_TABLE)
            .update(row)
            .eq("scope", scope_key)
            .lt("stamp", stamp)
            .execute()
        )
        if replaced.data:
            return

        try:
            await sb.table(LATEST_TABLE).insert(row).execute()
        except APIError as e:
            if e.code != _UNIQUE_VIOLATION:
                raise
            logger.debug("Stale snapshot for %s ignored (%s)", scope_key, stamp)

    async def latest(self, scope_key: str) -> LatestSnapshot | None:
        sb = await get_supabase_client()
        result = await (
            sb.table(LATEST_TABLE).select("data").eq("scope", scope_key).limit(1).execute()
        )
        rows: list[dict[str, Any]] = result.data or []
        if not rows or not rows[0].get("data"):
            return None
        return LatestSnapshot.model_validate(rows[0]["data"])

    async def recent_buckets(self, scope_key: str, limit: int) -> list[DailyBucket]:
        sb = await get_supabase_client()
        result = await (
            sb.table(BUCKETS_TABLE)
            .select("date, data")
            .eq("scope", scope_key)
            .order("date", desc=True)
            .limit(limit)
            .execute()
        )
        return [
            DailyBucket.model_validate(row.get("data") or {"date": row["date"]})
            for row in (result.data or [])
        ]

    async def scan(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        limit: int | None = None,
        eq: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        sb = await get_supabase_client()
        query = sb.table(collection).select("*")
        for column, value in (eq or {}).items():
            query = query.eq(column, value)
        if order_by:
            query = query.order(order_by, desc=True)
        if limit is not None:
            query = query.limit(limit)
        result = await query.execute()
        return result.data or []


# Singleton
_store: AnalyticsStore | None = None


def get_analytics_store() -> AnalyticsStore:
    """Get or create the configured store backend."""
    global _store
    if _store is None:
        if settings.analytics_store_backend == "memory":
            _store = MemoryAnalyticsStore()
        else:
            _store = SupabaseAnalyticsStore()
        logger.info("Analytics store backend: %s", settings.analytics_store_backend)
    return _store


def reset_analytics_store() -> None:
    """Reset the singleton (for testing)."""
    global _store
    _store = None
