"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> InferencePipeline.run

The pipeline is synchronous; the pool keeps it off the event loop, bounds how
many classifications run at once, and tallies their outcomes for the health
endpoint. Requests beyond the limit queue with a 5s timeout, then get 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from leafscan.errors import PipelineError

if TYPE_CHECKING:
    from leafscan.config import Settings
    from leafscan.ml.pipeline import InferencePipeline, PipelineResult

logger = logging.getLogger(__name__)

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


@dataclass(frozen=True)
class PoolStats:
    """Snapshot of pool activity since startup."""

    active: int
    queued: int
    completed: int
    failed: int
    rejected: int
    last_latency_ms: float | None


class InferencePool:
    """Runs pipeline calls on a bounded thread pool and counts their outcomes."""

    def __init__(self, settings: Settings, timeout: float = SEMAPHORE_TIMEOUT_SECONDS) -> None:
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="leafscan-inference",
        )
        self._timeout = timeout

        self._lock = threading.Lock()
        self._active = 0
        self._queued = 0
        self._completed = 0
        self._failed = 0
        self._rejected = 0
        self._last_latency_ms: float | None = None

    async def classify(
        self,
        pipeline: InferencePipeline,
        image_bytes: bytes,
        threshold: float | None = None,
    ) -> PipelineResult:
        """Run ``pipeline.run`` in a worker thread once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the timeout.
            PipelineError: Whatever the pipeline raises, unchanged.
        """
        await self._acquire()
        started = time.perf_counter()
        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(self._executor, pipeline.run, image_bytes, threshold)
        except PipelineError:
            with self._lock:
                self._failed += 1
            raise
        finally:
            self._slots.release()
            with self._lock:
                self._active -= 1

        elapsed_ms = (time.perf_counter() - started) * 1000
        with self._lock:
            self._completed += 1
            self._last_latency_ms = elapsed_ms
        logger.debug("Classified %s bytes in %.1fms (%s)", len(image_bytes), elapsed_ms, result.diagnosis.kind)
        return result

    async def _acquire(self) -> None:
        with self._lock:
            self._queued += 1
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._timeout)
        except TimeoutError:
            with self._lock:
                self._rejected += 1
            logger.warning("Inference queue full, gave up after %.1fs", self._timeout)
            raise
        finally:
            with self._lock:
                self._queued -= 1
        with self._lock:
            self._active += 1

    @property
    def active_count(self) -> int:
        """Number of currently running classifications."""
        with self._lock:
            return self._active

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a slot."""
        with self._lock:
            return self._queued

    def stats(self) -> PoolStats:
        with self._lock:
            return PoolStats(
                active=self._active,
                queued=self._queued,
                completed=self._completed,
                failed=self._failed,
                rejected=self._rejected,
                last_latency_ms=self._last_latency_ms,
            )

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
