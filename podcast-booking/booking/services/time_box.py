"""
Bounded-time wave runner.
Processes items in concurrent waves and stops issuing new waves once the
time budget is used up, so a serverless invocation returns before the
platform kills it. Callers resume by invoking again with what is left.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


@dataclass
class TimeBoxResult:
    """
    Outcome of a time-boxed run.

    `results` pairs every attempted item with its worker result; a worker
    that raised is recorded as None.
    """

    results: List[Tuple[Any, Optional[Any]]] = field(default_factory=list)
    processed: int = 0
    remaining: int = 0
    stopped_early: bool = False
    elapsed: float = 0.0


async def run_time_boxed(
    items: Sequence[Any],
    worker: Callable[[Any], Awaitable[Any]],
    budget_seconds: float,
    batch_size: int,
    concurrent_batches: int,
    clock: Callable[[], float] = time.monotonic,
    label: str = "items",
) -> TimeBoxResult:
    """
    Run `worker` over `items` in waves of batch_size * concurrent_batches.

    The elapsed time is checked before each wave; a wave that has started is
    always awaited to completion. Items keep their input order across waves.

    Args:
        items: Work items, processed in order
        worker: Async callable applied to each item
        budget_seconds: Wall-clock budget for starting new waves
        batch_size: Items per batch
        concurrent_batches: Batches running at the same time
        clock: Monotonic time source (injectable for tests)
        label: Name used in log lines

    Returns:
        TimeBoxResult with processed/remaining counts
    """
    wave_size = max(1, batch_size) * max(1, concurrent_batches)
    total = len(items)
    start = clock()
    outcome = TimeBoxResult(remaining=total)

    for offset in range(0, total, wave_size):
        elapsed = clock() - start
        if elapsed > budget_seconds:
            outcome.stopped_early = True
            logger.warning(
                f"⏱️  Time budget reached after {elapsed:.1f}s - "
                f"{total - offset} {label} left for the next call"
            )
            break

        wave = list(items[offset:offset + wave_size])
        logger.info(f"🌊 Processing {label} {offset + 1}-{offset + len(wave)} of {total}")
        results = await asyncio.gather(*(worker(item) for item in wave), return_exceptions=True)

        for item, result in zip(wave, results):
            if isinstance(result, Exception):
                logger.error(f"❌ Error processing {item} ({label}): {result}")
                result = None
            outcome.results.append((item, result))

        outcome.processed += len(wave)
        outcome.remaining = total - outcome.processed

    outcome.elapsed = clock() - start
    return outcome
