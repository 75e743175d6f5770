"""
Runs AI fit analysis for one client or prospect over cached podcasts,
time-boxed like the Podscan fetch. Each (consumer, podcast) pair is
analyzed at most once; see AnnotationStore.clear_analysis to redo it.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence

from ..ai.fit_analyzer import FitAnalyzer
from ..config import settings
from ..database.annotations import Annotation, AnnotationStore
from ..database.cache_service import CachedPodcast
from .time_box import run_time_boxed

logger = logging.getLogger(__name__)


@dataclass
class ConsumerProfile:
    consumer_id: str
    name: str
    bio: str


@dataclass
class AnalysisOutcome:
    analyzed: int = 0
    generated: int = 0
    remaining: int = 0
    stopped_early: bool = False
    annotations: Dict[int, Annotation] = field(default_factory=dict)

    @property
    def ai_complete(self) -> bool:
        return self.remaining == 0


async def run_fit_analysis(
    podcasts: Sequence[CachedPodcast],
    consumer: ConsumerProfile,
    store: AnnotationStore,
    analyzer: FitAnalyzer,
    budget_seconds: float = settings.MAX_RUNTIME_SECONDS,
    batch_size: int = settings.AI_BATCH_SIZE,
    concurrent_batches: int = settings.AI_CONCURRENT_BATCHES,
    clock: Callable[[], float] = time.monotonic,
) -> AnalysisOutcome:
    """
    Analyze every podcast this consumer has no analysis for yet.

    Args:
        podcasts: Cached podcasts from the consumer's sheet
        consumer: Id, name and bio passed to the analyzer
        store: Annotation table for the consumer kind
        analyzer: Fit analysis oracle
        budget_seconds: Time budget for starting new waves

    Returns:
        AnalysisOutcome; `analyzed` counts pairs attempted in this call and
        `generated` those that produced a usable analysis
    """
    by_row = {p.id: p for p in podcasts}
    pending = store.pending(consumer.consumer_id, list(by_row))
    outcome = AnalysisOutcome(remaining=len(pending))
    if not pending:
        logger.info(f"✅ All {len(by_row)} podcasts already analyzed for {consumer.name}")
        return outcome

    logger.info(f"🤖 Running fit analysis on {len(pending)} podcasts for {consumer.name}")

    async def worker(row_id: int) -> Optional[Annotation]:
        podcast = by_row[row_id]
        try:
            analysis = await analyzer.analyze_fit(podcast.snapshot, consumer.name, consumer.bio)
        except Exception as e:
            logger.error(f"❌ Fit analysis raised for {podcast.podscan_id}: {e}")
            analysis = None
        # Failures are stored too so the pair is not retried on every load
        return store.mark_analyzed(consumer.consumer_id, row_id, analysis)

    boxed = await run_time_boxed(
        pending,
        worker,
        budget_seconds=budget_seconds,
        batch_size=batch_size,
        concurrent_batches=concurrent_batches,
        clock=clock,
        label="analyses",
    )

    outcome.analyzed = boxed.processed
    outcome.remaining = boxed.remaining
    outcome.stopped_early = boxed.stopped_early
    for row_id, annotation in boxed.results:
        if annotation is None:
            continue
        outcome.annotations[row_id] = annotation
        if annotation.has_analysis:
            outcome.generated += 1

    logger.info(
        f"✅ Fit analysis done - attempted: {outcome.analyzed}, generated: {outcome.generated}, "
        f"remaining: {outcome.remaining}"
    )
    return outcome
