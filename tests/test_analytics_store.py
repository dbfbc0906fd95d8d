"""
Tests for the analytics store backends.

Covers: memory scans (filter, order, limit), memory bucket isolation,
snapshot ordering, key-lock lifetime, Supabase compare-and-swap (insert,
versioned update, conflict retry, connection retry, exhausted retries,
hard failure), after-commit hook, latest snapshot guard, store singleton.
"""

from __future__ import annotations

import asyncio
import gc
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from postgrest.exceptions import APIError

from app.models.analytics import DailyBucket
from app.services.analytics.exceptions import StorageUnavailable
from app.services.analytics.store import (
    BUCKETS_TABLE,
    LATEST_TABLE,
    MemoryAnalyticsStore,
    SupabaseAnalyticsStore,
    get_analytics_store,
    reset_analytics_store,
)


def _bump(bucket: DailyBucket) -> DailyBucket:
    updated = bucket.model_copy(deep=True)
    updated.total_messages_today += 1
    return updated


class _Query:
    """Chainable stand-in for a PostgREST request builder."""

    def __init__(self, client: "_FakeSupabase", table: str) -> None:
        self.client = client
        self.table = table
        self.ops: list[tuple[Any, ...]] = []
        client.queries.append(self)

    def __getattr__(self, name: str):  # type: ignore[no-untyped-def]
        def _op(*args: Any, **kwargs: Any) -> "_Query":
            self.ops.append((name, *args, *sorted(kwargs.items())))
            return self

        return _op

    async def execute(self) -> SimpleNamespace:
        response = self.client.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(data=response)

    def op(self, name: str) -> tuple[Any, ...] | None:
        return next((o for o in self.ops if o[0] == name), None)


class _FakeSupabase:
    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.queries: list[_Query] = []

    def table(self, name: str) -> _Query:
        return _Query(self, name)


def _patched(fake: _FakeSupabase):  # type: ignore[no-untyped-def]
    return patch(
        "app.services.analytics.store.get_supabase_client",
        AsyncMock(return_value=fake),
    )


def _stored(version: int, total: int) -> dict[str, Any]:
    return {
        "version": version,
        "data": DailyBucket(date="2026-03-10", total_messages_today=total).to_document(),
    }


# ===========================================================================
# Memory backend
# ===========================================================================


@pytest.mark.unit
class TestMemoryStore:
    """In-process backend."""

    @pytest.mark.asyncio
    async def test_scan_filters_orders_and_limits(self) -> None:
        store = MemoryAnalyticsStore()
        for i, status in enumerate(["sent", "pending", "sent", "sent"]):
            store.insert("outreach_logs", {"id": i, "status": status, "createdAt": f"2026-03-0{i + 1}"})

        rows = await store.scan(
            "outreach_logs", order_by="createdAt", limit=2, eq={"status": "sent"}
        )

        assert [r["id"] for r in rows] == [3, 2]

    @pytest.mark.asyncio
    async def test_scan_of_unknown_collection_is_empty(self) -> None:
        assert await MemoryAnalyticsStore().scan("nothing") == []

    @pytest.mark.asyncio
    async def test_scan_returns_copies(self) -> None:
        store = MemoryAnalyticsStore()
        store.insert("leads", {"leadTier": "hot"})
        rows = await store.scan("leads")
        rows[0]["leadTier"] = "cold"
        assert (await store.scan("leads"))[0]["leadTier"] == "hot"

    @pytest.mark.asyncio
    async def test_update_bucket_starts_from_empty_bucket(self) -> None:
        store = MemoryAnalyticsStore()
        committed = await store.update_bucket("global", "2026-03-10", _bump)
        assert committed.date == "2026-03-10"
        assert committed.total_messages_today == 1

    @pytest.mark.asyncio
    async def test_latest_merges_and_stamps(self) -> None:
        store = MemoryAnalyticsStore()
        assert await store.latest("global") is None

        await store.write_latest("global", DailyBucket(date="2026-03-10", new_leads_today=2))
        latest = await store.latest("global")

        assert latest is not None
        assert latest.new_leads_today == 2
        assert latest.updated_at is not None

    @pytest.mark.asyncio
    async def test_latest_ignores_older_bucket(self) -> None:
        store = MemoryAnalyticsStore()
        await store.write_latest("global", DailyBucket(date="2026-03-10", response_samples=5))
        await store.write_latest("global", DailyBucket(date="2026-03-10", response_samples=4))
        await store.write_latest("global", DailyBucket(date="2026-03-09", response_samples=90))

        latest = await store.latest("global")
        assert latest is not None
        assert (latest.date, latest.response_samples) == ("2026-03-10", 5)

    @pytest.mark.asyncio
    async def test_latest_moves_to_next_day(self) -> None:
        store = MemoryAnalyticsStore()
        await store.write_latest("global", DailyBucket(date="2026-03-10", response_samples=40))
        await store.write_latest("global", DailyBucket(date="2026-03-11", response_samples=1))

        latest = await store.latest("global")
        assert latest is not None
        assert latest.date == "2026-03-11"

    @pytest.mark.asyncio
    async def test_key_locks_are_released_after_writes(self) -> None:
        store = MemoryAnalyticsStore()
        for day in ("2026-03-08", "2026-03-09", "2026-03-10"):
            await store.update_bucket("global", day, _bump)

        gc.collect()
        assert len(store._locks) == 0

    @pytest.mark.asyncio
    async def test_concurrent_writers_share_one_lock(self) -> None:
        store = MemoryAnalyticsStore()
        order: list[str] = []

        async def slow_after_commit(bucket: DailyBucket) -> None:
            order.append(f"start-{bucket.total_messages_today}")
            await asyncio.sleep(0.01)
            order.append(f"end-{bucket.total_messages_today}")

        await asyncio.gather(
            store.update_bucket("global", "2026-03-10", _bump, after_commit=slow_after_commit),
            store.update_bucket("global", "2026-03-10", _bump, after_commit=slow_after_commit),
        )

        assert order == ["start-1", "end-1", "start-2", "end-2"]


# ===========================================================================
# Supabase backend
# ===========================================================================


@pytest.mark.unit
class TestSupabaseCompareAndSwap:
    """Versioned bucket writes against a fake PostgREST client."""

    @pytest.mark.asyncio
    async def test_inserts_first_version_when_row_missing(self) -> None:
        fake = _FakeSupabase([[], [{"version": 1}]])
        with _patched(fake):
            committed = await SupabaseAnalyticsStore().update_bucket(
                "acme", "2026-03-10", _bump
            )

        assert committed.total_messages_today == 1
        select, insert = fake.queries
        assert select.table == BUCKETS_TABLE
        assert ("eq", "scope", "acme") in select.ops
        assert ("eq", "date", "2026-03-10") in select.ops
        row = insert.op("insert")[1]
        assert row["version"] == 1
        assert row["data"]["totalMessagesToday"] == 1

    @pytest.mark.asyncio
    async def test_updates_with_expected_version(self) -> None:
        fake = _FakeSupabase([[_stored(3, 7)], [{"version": 4}]])
        with _patched(fake):
            committed = await SupabaseAnalyticsStore().update_bucket(
                "acme", "2026-03-10", _bump
            )

        assert committed.total_messages_today == 8
        update = fake.queries[1]
        assert update.op("update")[1]["version"] == 4
        assert ("eq", "version", 3) in update.ops

    @pytest.mark.asyncio
    async def test_retries_after_lost_race(self) -> None:
        fake = _FakeSupabase(
            [[_stored(3, 7)], [], [_stored(4, 9)], [{"version": 5}]]
        )
        with _patched(fake), patch(
            "app.services.analytics.store.random.uniform", return_value=0
        ):
            committed = await SupabaseAnalyticsStore().update_bucket(
                "acme", "2026-03-10", _bump
            )

        # Mutation re-ran on the fresher row
        assert committed.total_messages_today == 10
        assert ("eq", "version", 4) in fake.queries[3].ops

    @pytest.mark.asyncio
    async def test_unique_violation_on_insert_is_a_conflict(self) -> None:
        duplicate = APIError(
            {"code": "23505", "message": "duplicate key", "details": "", "hint": ""}
        )
        fake = _FakeSupabase([[], duplicate, [_stored(1, 1)], [{"version": 2}]])
        with _patched(fake), patch(
            "app.services.analytics.store.random.uniform", return_value=0
        ):
            committed = await SupabaseAnalyticsStore().update_bucket(
                "acme", "2026-03-10", _bump
            )

        assert committed.total_messages_today == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_storage_unavailable(self) -> None:
        fake = _FakeSupabase([[_stored(1, 1)], [], [_stored(2, 2)], []])
        with _patched(fake), patch(
            "app.services.analytics.store.random.uniform", return_value=0
        ):
            with pytest.raises(StorageUnavailable) as exc_info:
                await SupabaseAnalyticsStore(max_retries=2).update_bucket(
                    "acme", "2026-03-10", _bump
                )

        assert exc_info.value.scope_key == "acme"
        assert "2 attempts exhausted" in str(exc_info.value)
        assert fake.responses == []

    @pytest.mark.asyncio
    async def test_hard_failure_is_not_retried(self) -> None:
        fake = _FakeSupabase([RuntimeError("connection reset"), [_stored(1, 1)]])
        with _patched(fake):
            with pytest.raises(StorageUnavailable, match="connection reset"):
                await SupabaseAnalyticsStore().update_bucket("acme", "2026-03-10", _bump)

        assert len(fake.queries) == 1

    @pytest.mark.asyncio
    async def test_other_insert_errors_are_not_retried(self) -> None:
        denied = APIError({"code": "42501", "message": "permission denied", "details": "", "hint": ""})
        fake = _FakeSupabase([[], denied])
        with _patched(fake):
            with pytest.raises(StorageUnavailable):
                await SupabaseAnalyticsStore().update_bucket("acme", "2026-03-10", _bump)

    @pytest.mark.asyncio
    async def test_connection_failure_is_retried(self) -> None:
        fake = _FakeSupabase(
            [httpx.ConnectError("connection refused"), [_stored(2, 4)], [{"version": 3}]]
        )
        with _patched(fake), patch(
            "app.services.analytics.store.random.uniform", return_value=0
        ):
            committed = await SupabaseAnalyticsStore().update_bucket(
                "acme", "2026-03-10", _bump
            )

        assert committed.total_messages_today == 5
        assert fake.responses == []

    @pytest.mark.asyncio
    async def test_connection_failures_share_the_retry_budget(self) -> None:
        fake = _FakeSupabase(
            [httpx.ConnectTimeout("slow"), [_stored(1, 1)], [], httpx.ConnectError("down")]
        )
        with _patched(fake), patch(
            "app.services.analytics.store.random.uniform", return_value=0
        ):
            with pytest.raises(StorageUnavailable, match="3 attempts exhausted"):
                await SupabaseAnalyticsStore(max_retries=3).update_bucket(
                    "acme", "2026-03-10", _bump
                )

    @pytest.mark.asyncio
    async def test_read_timeout_after_write_is_not_retried(self) -> None:
        # The update may have been applied; re-running the mutation could double count
        fake = _FakeSupabase([[_stored(1, 1)], httpx.ReadTimeout("no response")])
        with _patched(fake):
            with pytest.raises(StorageUnavailable, match="no response"):
                await SupabaseAnalyticsStore().update_bucket("acme", "2026-03-10", _bump)

        assert len(fake.queries) == 2

    @pytest.mark.asyncio
    async def test_after_commit_runs_with_committed_bucket(self) -> None:
        fake = _FakeSupabase([[], [{"version": 1}]])
        seen: list[int] = []

        async def after_commit(bucket: DailyBucket) -> None:
            seen.append(bucket.total_messages_today)

        with _patched(fake):
            await SupabaseAnalyticsStore().update_bucket(
                "acme", "2026-03-10", _bump, after_commit=after_commit
            )

        assert seen == [1]

    @pytest.mark.asyncio
    async def test_after_commit_not_called_when_commit_fails(self) -> None:
        fake = _FakeSupabase([RuntimeError("down")])
        after_commit = AsyncMock()

        with _patched(fake):
            with pytest.raises(StorageUnavailable):
                await SupabaseAnalyticsStore().update_bucket(
                    "acme", "2026-03-10", _bump, after_commit=after_commit
                )

        after_commit.assert_not_awaited()


@pytest.mark.unit
class TestSupabaseReads:
    """Snapshot and scan queries."""

    @pytest.mark.asyncio
    async def test_write_latest_replaces_older_snapshot(self) -> None:
        fake = _FakeSupabase([[{"scope": "acme"}]])
        with _patched(fake):
            await SupabaseAnalyticsStore().write_latest(
                "acme", DailyBucket(date="2026-03-10", new_leads_today=4, response_samples=12)
            )

        assert len(fake.queries) == 1
        query = fake.queries[0]
        assert query.table == LATEST_TABLE
        row = query.op("update")[1]
        assert row["scope"] == "acme"
        assert row["stamp"] == "2026-03-10:0000000012"
        assert row["data"]["newLeadsToday"] == 4
        assert "updatedAt" in row["data"]
        assert ("eq", "scope", "acme") in query.ops
        assert ("lt", "stamp", "2026-03-10:0000000012") in query.ops

    @pytest.mark.asyncio
    async def test_write_latest_inserts_first_snapshot(self) -> None:
        fake = _FakeSupabase([[], [{"scope": "acme"}]])
        with _patched(fake):
            await SupabaseAnalyticsStore().write_latest("acme", DailyBucket(date="2026-03-10"))

        assert fake.queries[1].op("insert")[1]["scope"] == "acme"

    @pytest.mark.asyncio
    async def test_write_latest_skips_when_stored_snapshot_is_newer(self) -> None:
        duplicate = APIError(
            {"code": "23505", "message": "duplicate key", "details": "", "hint": ""}
        )
        fake = _FakeSupabase([[], duplicate])
        with _patched(fake):
            await SupabaseAnalyticsStore().write_latest("acme", DailyBucket(date="2026-03-09"))

        assert fake.responses == []

    @pytest.mark.asyncio
    async def test_write_latest_other_errors_propagate(self) -> None:
        denied = APIError({"code": "42501", "message": "permission denied", "details": "", "hint": ""})
        fake = _FakeSupabase([[], denied])
        with _patched(fake):
            with pytest.raises(APIError):
                await SupabaseAnalyticsStore().write_latest("acme", DailyBucket(date="2026-03-10"))

    @pytest.mark.asyncio
    async def test_latest_missing_row(self) -> None:
        fake = _FakeSupabase([[]])
        with _patched(fake):
            assert await SupabaseAnalyticsStore().latest("acme") is None

    @pytest.mark.asyncio
    async def test_recent_buckets_ordered_by_date_desc(self) -> None:
        fake = _FakeSupabase(
            [[{"date": "2026-03-10", "data": _stored(1, 5)["data"]}, {"date": "2026-03-09", "data": None}]]
        )
        with _patched(fake):
            buckets = await SupabaseAnalyticsStore().recent_buckets("acme", 7)

        assert [b.date for b in buckets] == ["2026-03-10", "2026-03-09"]
        assert buckets[0].total_messages_today == 5
        assert buckets[1].total_messages_today == 0
        ops = fake.queries[0].ops
        assert ("order", "date", ("desc", True)) in ops
        assert ("limit", 7) in ops

    @pytest.mark.asyncio
    async def test_scan_builds_filters(self) -> None:
        fake = _FakeSupabase([[{"id": 1}]])
        with _patched(fake):
            rows = await SupabaseAnalyticsStore().scan(
                "follow_ups", order_by="createdAt", limit=50, eq={"status": "pending"}
            )

        assert rows == [{"id": 1}]
        ops = fake.queries[0].ops
        assert ("eq", "status", "pending") in ops
        assert ("order", "createdAt", ("desc", True)) in ops
        assert ("limit", 50) in ops


@pytest.mark.unit
class TestStoreSingleton:
    """get_analytics_store / reset_analytics_store."""

    def test_memory_backend_from_settings(self) -> None:
        store = get_analytics_store()
        assert isinstance(store, MemoryAnalyticsStore)
        assert get_analytics_store() is store

    def test_reset_creates_new_instance(self) -> None:
        first = get_analytics_store()
        reset_analytics_store()
        assert get_analytics_store() is not first

    def test_supabase_backend_from_settings(self) -> None:
        from app.config import settings

        with patch.object(settings, "analytics_store_backend", "supabase"):
            assert isinstance(get_analytics_store(), SupabaseAnalyticsStore)
