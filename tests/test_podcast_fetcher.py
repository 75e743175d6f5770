"""
Tests for the bounded-time wave runner and the Podscan fetch loop.
"""

import asyncio

import pytest

from booking.database.cache_service import BatchUpsertResult
from booking.services.podcast_fetcher import fetch_missing_podcasts
from booking.services.time_box import run_time_boxed


class TestRunTimeBoxed:
    """Tests for run_time_boxed."""

    @pytest.mark.asyncio
    async def test_processes_everything_within_budget(self, clock):
        async def double(x):
            return x * 2

        result = await run_time_boxed(list(range(7)), double, budget_seconds=50, batch_size=2, concurrent_batches=2, clock=clock)

        assert [value for _, value in result.results] == [0, 2, 4, 6, 8, 10, 12]
        assert result.processed == 7
        assert result.remaining == 0
        assert not result.stopped_early

    @pytest.mark.asyncio
    async def test_partial_completion_then_resume(self, clock):
        """Should stop between waves and finish on a second call with the rest."""
        async def slow(x):
            clock.advance(20)
            return x

        items = list(range(10))
        first = await run_time_boxed(items, slow, budget_seconds=50, batch_size=1, concurrent_batches=2, clock=clock)

        # waves start at t=0, 40 (both within budget); t=80 is over
        assert first.stopped_early
        assert first.processed == 4
        assert first.remaining == len(items) - first.processed

        rest = items[first.processed:]
        second = await run_time_boxed(rest, lambda x: asyncio.sleep(0, result=x), budget_seconds=50,
                                      batch_size=1, concurrent_batches=2, clock=clock)

        assert not second.stopped_early
        done = [item for item, _ in first.results] + [item for item, _ in second.results]
        assert done == items

    @pytest.mark.asyncio
    async def test_worker_exception_recorded_as_none(self, clock):
        async def flaky(x):
            if x == 2:
                raise ValueError("bad item")
            return x

        result = await run_time_boxed([1, 2, 3], flaky, budget_seconds=50, batch_size=5, concurrent_batches=1, clock=clock)

        assert result.results == [(1, 1), (2, None), (3, 3)]
        assert result.processed == 3

    @pytest.mark.asyncio
    async def test_zero_budget_does_first_wave(self, clock):
        """The budget gates new waves; an already expired budget still allows wave one."""
        async def tick(x):
            clock.advance(1)
            return x

        result = await run_time_boxed([1, 2, 3, 4], tick, budget_seconds=0, batch_size=2, concurrent_batches=1, clock=clock)

        assert result.processed == 2
        assert result.stopped_early


class TestFetchMissingPodcasts:
    """Tests for fetch_missing_podcasts."""

    @pytest.mark.asyncio
    async def test_fetches_and_saves_in_one_batch(self, cache, read_row, make_podscan_client):
        async with make_podscan_client(no_demographics={"b"}) as client:
            outcome = await fetch_missing_podcasts(["a", "b", "c"], client, cache)

        assert outcome.podscan_fetched == 3
        assert outcome.demographics_fetched == 2
        assert outcome.saved == 3
        assert outcome.persisted
        assert set(outcome.row_ids) == {"a", "b", "c"}
        assert read_row("a").demographics_episodes_analyzed == 4
        assert read_row("b").demographics is None

    @pytest.mark.asyncio
    async def test_failed_ids_are_dropped(self, cache, read_row, make_podscan_client):
        async with make_podscan_client(fail_ids={"bad"}) as client:
            outcome = await fetch_missing_podcasts(["ok", "bad"], client, cache)

        assert outcome.failed == ["bad"]
        assert [s.podscan_id for s in outcome.snapshots] == ["ok"]
        assert outcome.remaining == 0
        assert read_row("bad") is None

    @pytest.mark.asyncio
    async def test_unreadable_demographics_keep_the_podcast(self, cache, read_row, make_podscan_client):
        """Should save the podcast without demographics when that reply is not JSON."""
        async with make_podscan_client(broken_demographics={"p1"}) as client:
            outcome = await fetch_missing_podcasts(["p1"], client, cache)

        assert outcome.podscan_fetched == 1
        assert outcome.failed == []
        assert outcome.demographics_fetched == 0
        assert read_row("p1") is not None
        assert read_row("p1").demographics is None

    @pytest.mark.asyncio
    async def test_demographics_optional(self, cache, make_podscan_client):
        async with make_podscan_client() as client:
            outcome = await fetch_missing_podcasts(["a"], client, cache, include_demographics=False)

        assert outcome.demographics_fetched == 0
        assert outcome.snapshots[0].demographics is None

    @pytest.mark.asyncio
    async def test_batch_write_failure_reports_unsaved(self, cache, monkeypatch, make_podscan_client):
        monkeypatch.setattr(
            cache, "upsert_batch",
            lambda snapshots: BatchUpsertResult(success=False, count=0, errors=["db down"]),
        )

        async with make_podscan_client() as client:
            outcome = await fetch_missing_podcasts(["a", "b"], client, cache)

        assert not outcome.persisted
        assert outcome.saved == 0
        assert len(outcome.snapshots) == 2

    @pytest.mark.asyncio
    async def test_time_box_and_resume(self, cache, clock, make_podscan_client):
        """Should leave the tail for the next call and finish it there."""
        ids = [f"p{i}" for i in range(6)]

        async with make_podscan_client(on_request=lambda request: clock.advance(10)) as client:
            first = await fetch_missing_podcasts(
                ids, client, cache, budget_seconds=25, batch_size=2, concurrent_batches=1,
                include_demographics=False, clock=clock,
            )
            lookup = cache.resolve(ids)
            second = await fetch_missing_podcasts(
                lookup.missing, client, cache, budget_seconds=1000, batch_size=2, concurrent_batches=1,
                include_demographics=False, clock=clock,
            )
        final = cache.resolve(ids)
        await cache.drain_pending_hits()

        assert first.stopped_early
        assert first.attempted == 4
        assert first.remaining == 2
        assert first.remaining_ids == ["p4", "p5"]
        assert sorted(lookup.missing) == ["p4", "p5"]
        assert second.podscan_fetched == 2 and not second.stopped_early
        assert final.missing == []

    @pytest.mark.asyncio
    async def test_empty_input(self, cache, make_podscan_client):
        async with make_podscan_client() as client:
            outcome = await fetch_missing_podcasts([], client, cache)
        assert outcome.attempted == 0 and outcome.remaining == 0
