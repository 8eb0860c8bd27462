"""
scoring/scoring_task.py
-----------------------
Encode a sketch and its hidden target image, then score them.

ScoringTask.run() executes the pipeline on a worker thread and races it
against a fixed deadline. If the deadline wins the caller receives the
sentinel score 0.0 tagged TIMED_OUT; the pipeline is left running and its
eventual result is discarded. Encode failures are raised, never scored.
"""

import asyncio
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from game_core.logger import log_event, setup_logger
from game_core.settings import get_settings
from scoring.messages import ScoringOutcome
from scoring.vector_utils import CHUNK_SIZE, cosine_similarity
from vision.image_encoder import ImageEncoder
from vision.image_source import ImageRef

DEFAULT_TIMEOUT = 15.0
TIMEOUT_SCORE = 0.0

logger = setup_logger()


@dataclass(frozen=True)
class ScoringResult:
    score: float
    outcome: ScoringOutcome
    elapsed: float

    @property
    def timed_out(self) -> bool:
        return self.outcome is ScoringOutcome.TIMED_OUT


def _describe(ref: ImageRef) -> str:
    s = getattr(ref, "location", ref)
    if not isinstance(s, str):
        return f"<{type(s).__name__}>"
    return s if len(s) <= 80 else s[:80] + "..."


class ScoringTask:
    """Runs encode(query) -> encode(answer) -> cosine_similarity under a deadline."""

    def __init__(
        self,
        encoder: Optional[ImageEncoder] = None,
        timeout: float = DEFAULT_TIMEOUT,
        chunk_size: int = CHUNK_SIZE,
        executor: Optional[Executor] = None,
    ):
        self.encoder = encoder or ImageEncoder.from_settings()
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._executor = executor

    @classmethod
    def from_settings(cls, settings=None, encoder: Optional[ImageEncoder] = None):
        settings = settings or get_settings()
        return cls(
            encoder=encoder or ImageEncoder.from_settings(settings),
            timeout=settings.timeout_seconds,
            chunk_size=settings.chunk_size,
            executor=ThreadPoolExecutor(
                max_workers=settings.max_workers, thread_name_prefix="scoring"
            ),
        )

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(thread_name_prefix="scoring")
        return self._executor

    def calculate_similarity(self, query_image: ImageRef, ans_image: ImageRef) -> float:
        """Blocking pipeline: both encodes must finish before scoring."""
        query_embeds = self.encoder.encode(query_image)
        ans_embeds = self.encoder.encode(ans_image)
        return cosine_similarity(query_embeds, ans_embeds, chunk_size=self.chunk_size)

    async def run(self, query_image: ImageRef, ans_image: ImageRef) -> ScoringResult:
        """
        Race the pipeline against the deadline.
        Whichever settles first decides the result; the loser is not cancelled.
        """
        loop = asyncio.get_running_loop()
        t0 = time.perf_counter()
        request = {"query_image": _describe(query_image), "ans_image": _describe(ans_image)}
        log_event("scoring_started", request)

        pipeline = loop.run_in_executor(self.executor, self.calculate_similarity, query_image, ans_image)
        try:
            done, _ = await asyncio.wait({pipeline}, timeout=self.timeout)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; detach its result from this loop
            pipeline.cancel()
            log_event("scoring_cancelled", request)
            raise
        elapsed = time.perf_counter() - t0

        if pipeline not in done:
            pipeline.add_done_callback(lambda fut: self._discard(fut, request))
            logger.warning("Scoring timed out after %.2fs; returning %.1f", elapsed, TIMEOUT_SCORE)
            log_event("scoring_timed_out", {**request, "elapsed_ms": round(elapsed * 1000, 2)})
            return ScoringResult(TIMEOUT_SCORE, ScoringOutcome.TIMED_OUT, elapsed)

        exc = pipeline.exception()
        if exc is not None:
            logger.error("Scoring failed: %s: %s", type(exc).__name__, exc)
            log_event("scoring_failed", {**request, "error": type(exc).__name__, "message": str(exc)})
            raise exc

        score = pipeline.result()
        log_event("scoring_completed", {
            **request,
            "score": score,
            "elapsed_ms": round(elapsed * 1000, 2),
        })
        return ScoringResult(score, ScoringOutcome.COMPLETED, elapsed)

    @staticmethod
    def _discard(fut: asyncio.Future, request: dict):
        # Late result of a timed-out run; retrieved only so it is not reported as unhandled
        if fut.cancelled():
            return
        exc = fut.exception()
        payload = {**request, "error": repr(exc)} if exc else {**request, "score": fut.result()}
        log_event("scoring_abandoned", payload)

    def close(self, wait: bool = False):
        """Shut down the executor; abandoned pipelines still run to completion."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None


def compare(query_image: ImageRef, ans_image: ImageRef) -> float:
    """Score two images directly, without a deadline, using the shared model cache."""
    encoder = ImageEncoder.from_settings()
    return cosine_similarity(
        encoder.encode(query_image),
        encoder.encode(ans_image),
        chunk_size=get_settings().chunk_size,
    )
