"""
Fetches podcasts that are missing (or stale) in the central cache from
Podscan, inside the invocation's time budget, and writes them back with a
single batch upsert.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import httpx

from ..config import settings
from ..database.cache_service import PodcastCacheService
from ..ingestion.podscan_client import PodcastSnapshot, PodscanClient, PodscanError
from .time_box import run_time_boxed

logger = logging.getLogger(__name__)


@dataclass
class FetchOutcome:
    snapshots: List[PodcastSnapshot] = field(default_factory=list)
    row_ids: Dict[str, int] = field(default_factory=dict)
    attempted: int = 0
    remaining: int = 0
    remaining_ids: List[str] = field(default_factory=list)
    stopped_early: bool = False
    failed: List[str] = field(default_factory=list)
    podscan_fetched: int = 0
    demographics_fetched: int = 0
    persisted: bool = True
    saved: int = 0

    def stats(self) -> Dict[str, int]:
        return {
            "podscan_fetched": self.podscan_fetched,
            "demographics_fetched": self.demographics_fetched,
            "failed": len(self.failed),
            "saved": self.saved,
        }


async def fetch_podcast(client: PodscanClient, podscan_id: str, include_demographics: bool = True) -> Optional[PodcastSnapshot]:
    """
    Fetch one podcast, plus its demographics when asked.

    Returns:
        PodcastSnapshot, or None when the podcast itself could not be fetched.
        A demographics failure only leaves `demographics` empty.
    """
    try:
        snapshot = await client.get_podcast(podscan_id)
    except (PodscanError, httpx.HTTPError) as e:
        logger.error(f"❌ Error fetching podcast {podscan_id}: {e}")
        return None

    if include_demographics:
        try:
            snapshot.demographics = await client.get_demographics(podscan_id)
        except (PodscanError, httpx.HTTPError) as e:
            logger.warning(f"⚠️  Demographics unavailable for {podscan_id}: {e}")

    return snapshot


async def fetch_missing_podcasts(
    podscan_ids: Sequence[str],
    client: PodscanClient,
    cache: PodcastCacheService,
    budget_seconds: float = settings.MAX_RUNTIME_SECONDS,
    batch_size: int = settings.FETCH_BATCH_SIZE,
    concurrent_batches: int = settings.FETCH_CONCURRENT_BATCHES,
    include_demographics: bool = True,
    clock: Callable[[], float] = time.monotonic,
) -> FetchOutcome:
    """
    Fetch `podscan_ids` from Podscan in time-boxed waves and upsert the
    successes in one batch.

    Args:
        podscan_ids: Ids to fetch, in the order they should be attempted
        client: Podscan client shared by the whole invocation
        cache: Central cache the results are written to
        budget_seconds: Time budget for issuing new waves
        batch_size: Podcasts per batch
        concurrent_batches: Batches per wave
        include_demographics: Also fetch audience demographics
        clock: Monotonic time source

    Returns:
        FetchOutcome. When the batch write fails `persisted` is False and
        `saved` is 0, but the fetched snapshots are still returned.
    """
    ids = list(dict.fromkeys(podscan_ids))
    outcome = FetchOutcome(remaining=len(ids), remaining_ids=list(ids))
    if not ids:
        return outcome

    logger.info(f"🎙️  Fetching {len(ids)} podcasts from Podscan")

    async def worker(podscan_id: str) -> Optional[PodcastSnapshot]:
        return await fetch_podcast(client, podscan_id, include_demographics)

    boxed = await run_time_boxed(
        ids,
        worker,
        budget_seconds=budget_seconds,
        batch_size=batch_size,
        concurrent_batches=concurrent_batches,
        clock=clock,
        label="podcasts",
    )

    outcome.attempted = boxed.processed
    outcome.remaining = boxed.remaining
    outcome.remaining_ids = ids[boxed.processed:]
    outcome.stopped_early = boxed.stopped_early

    for podscan_id, snapshot in boxed.results:
        if snapshot is None:
            outcome.failed.append(podscan_id)
            continue
        outcome.snapshots.append(snapshot)
        outcome.podscan_fetched += 1
        if snapshot.demographics is not None:
            outcome.demographics_fetched += 1

    if outcome.snapshots:
        result = cache.upsert_batch(outcome.snapshots)
        outcome.persisted = result.success
        outcome.saved = result.count
        outcome.row_ids = result.row_ids
        if not result.success:
            logger.error(f"❌ Fetched {len(outcome.snapshots)} podcasts but the batch write failed")

    logger.info(
        f"✅ Podscan fetch done - fetched: {outcome.podscan_fetched}, "
        f"demographics: {outcome.demographics_fetched}, failed: {len(outcome.failed)}, "
        f"remaining: {outcome.remaining}"
    )
    return outcome
