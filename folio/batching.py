"""
Gated batch processing with backpressure.

The embedded storage engine accumulates write-ahead log and in-memory index
state between checkpoints. Feeding it thousands of embeddings at once ran it
out of memory, so work is processed in small batches:

1. Split the input into batches of batch_size
2. Process each batch with bounded concurrency
3. Run the post-batch hook (checkpoint)
4. Report progress
5. Pause between batches

Batches are strictly sequential: batch n+1 never starts before batch n's
checkpoint and pause have finished. That ordering is what bounds peak memory.
"""

import logging
import math
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable, Optional, Sequence, TypeVar

import psutil

from .errors import BatchRunError, CheckpointError
from .types import BatchProgress, BatchRunConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Adaptive sizing never goes below this many items per batch
MIN_ADAPTIVE_BATCH_SIZE = 10

# (pressure above, multiplier), checked from the top
_PRESSURE_STEPS = (
    (0.85, 0.25),
    (0.70, 0.50),
    (0.50, 0.75),
)


def memory_pressure() -> float:
    """Fraction of system memory in use, 0.0 to 1.0."""
    return psutil.virtual_memory().percent / 100.0


def adaptive_batch_size(base_batch_size: int, pressure: float) -> int:
    """
    Scale a batch size down under memory pressure.

    - < 50% in use: full size
    - 50-70%: 75%
    - 70-85%: 50%
    - > 85%: 25%

    Never returns less than MIN_ADAPTIVE_BATCH_SIZE.
    """
    multiplier = 1.0
    for threshold, factor in _PRESSURE_STEPS:
        if pressure > threshold:
            multiplier = factor
            break
    return max(MIN_ADAPTIVE_BATCH_SIZE, math.floor(base_batch_size * multiplier))


def _percent(processed: int, total: int) -> int:
    """Round half up, so 1/8 reports 13 rather than banker's 12."""
    if total == 0:
        return 100
    return (processed * 200 + total) // (2 * total)


def _run_batch(
    batch: Sequence[T],
    process: Callable[[T], R],
    concurrency: int,
) -> list[R]:
    """Process one batch, at most `concurrency` items in flight, results in input order."""
    workers = min(concurrency, len(batch))
    if workers <= 1:
        return [process(item) for item in batch]

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="folio-batch") as pool:
        futures = [pool.submit(process, item) for item in batch]
        done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
        failed = next(
            (f for f in futures if f in done and f.exception() is not None),
            None,
        )
        if failed is not None:
            # Items not yet started are dropped; running ones finish on pool exit
            for f in not_done:
                f.cancel()
            raise failed.exception()
        return [f.result() for f in futures]


def process_in_batches(
    items: Sequence[T],
    process: Callable[[T], R],
    config: BatchRunConfig,
    after_batch: Optional[Callable[[], None]] = None,
    on_progress: Optional[Callable[[BatchProgress], None]] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> list[R]:
    """
    Process items in gated batches.

    Args:
        items: Work items; consumed in order
        process: Function applied to every item
        config: Batch settings (batch_size is used as given)
        after_batch: Post-batch hook, e.g. a storage checkpoint; only
            called when config.checkpoint_enabled
        on_progress: Called once per completed batch
        sleep: Pause function between batches

    Returns:
        Results in input order

    Raises:
        BatchRunError: An item failed; chained from the item's exception
        CheckpointError: The post-batch hook failed
    """
    items = list(items)
    total = len(items)
    if total == 0:
        return []

    batch_size = config.batch_size
    total_batches = math.ceil(total / batch_size)
    results: list[R] = []

    for batch_idx in range(total_batches):
        start = batch_idx * batch_size
        batch = items[start:start + batch_size]
        batch_number = batch_idx + 1

        try:
            batch_results = _run_batch(batch, process, config.concurrency)
        except Exception as e:
            logger.warning(
                "Batch %d/%d failed after %d/%d items: %s",
                batch_number, total_batches, len(results), total, e,
            )
            raise BatchRunError(
                f"Batch {batch_number}/{total_batches} failed after {len(results)}/{total} items: {e}",
                items_processed=len(results),
                batch_index=batch_number,
            ) from e
        results.extend(batch_results)

        if after_batch is not None and config.checkpoint_enabled:
            try:
                after_batch()
            except Exception as e:
                logger.warning("Checkpoint after batch %d failed: %s", batch_number, e)
                raise CheckpointError(
                    f"Checkpoint after batch {batch_number}/{total_batches} failed "
                    f"({len(results)}/{total} items processed): {e}",
                    items_processed=len(results),
                    batch_index=batch_number,
                ) from e

        progress = BatchProgress(
            batch_index=batch_number,
            total_batches=total_batches,
            items_processed=len(results),
            items_total=total,
            percent=_percent(len(results), total),
        )
        logger.debug(
            "Batch %d/%d done (%d/%d, %d%%)",
            batch_number, total_batches, len(results), total, progress.percent,
        )
        if on_progress is not None:
            on_progress(progress)

        if config.batch_delay > 0 and batch_number < total_batches:
            sleep(config.batch_delay)

    return results


class BatchScheduler:
    """
    Runs work through process_in_batches with one fixed configuration.

    When the configuration asks for adaptive sizing, the batch size is
    derived once per run from the memory pressure at the start of the run.
    """

    def __init__(
        self,
        config: BatchRunConfig | None = None,
        *,
        pressure: Callable[[], float] = memory_pressure,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or BatchRunConfig()
        self._pressure = pressure
        self._sleep = sleep

    def effective_config(self) -> BatchRunConfig:
        """Configuration for a run starting now."""
        if not self.config.adaptive_sizing:
            return self.config
        size = adaptive_batch_size(self.config.batch_size, self._pressure())
        if size != self.config.batch_size:
            logger.info(
                "Memory pressure: batch size %d -> %d", self.config.batch_size, size,
            )
        return self.config.with_batch_size(size)

    def run(
        self,
        items: Sequence[T],
        process: Callable[[T], R],
        *,
        after_batch: Optional[Callable[[], None]] = None,
        on_progress: Optional[Callable[[BatchProgress], None]] = None,
    ) -> list[R]:
        return process_in_batches(
            items,
            process,
            self.effective_config(),
            after_batch,
            on_progress,
            sleep=self._sleep,
        )


class EmbeddingPipeline:
    """
    Embeds texts through a BatchScheduler with a storage checkpoint after
    every batch.

    Example:
        pipeline = EmbeddingPipeline(embedder, store.checkpoint, config)
        vectors = pipeline.embed_texts(chunks, on_progress=print)
    """

    def __init__(
        self,
        embedder,
        checkpoint: Callable[[], None],
        config: BatchRunConfig | None = None,
        *,
        scheduler: BatchScheduler | None = None,
    ):
        self._embedder = embedder
        self._checkpoint = checkpoint
        self._scheduler = scheduler or BatchScheduler(config)

    @property
    def config(self) -> BatchRunConfig:
        return self._scheduler.config

    def embed_texts(
        self,
        texts: Sequence[str],
        on_progress: Optional[Callable[[BatchProgress], None]] = None,
    ) -> list[list[float]]:
        return self._scheduler.run(
            texts,
            self._embedder.embed,
            after_batch=self._checkpoint,
            on_progress=on_progress,
        )
