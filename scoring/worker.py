"""
scoring/worker.py
-----------------
Background scoring context.

The worker owns a dedicated thread with its own event loop. Callers post a
request message and get exactly one response message back, either through
the returned future or the `on_message` callback. Nothing is shared with the
caller except those messages.
"""

import asyncio
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from pydantic import ValidationError

from game_core.errors import ScoringError
from game_core.logger import setup_logger
from scoring.messages import ScoringRequest, ScoringResponse
from scoring.scoring_task import ScoringTask

logger = setup_logger()


class ScoringWorker:
    def __init__(
        self,
        task: ScoringTask,
        on_message: Optional[Callable[[dict], None]] = None,
    ):
        self.task = task
        self.on_message = on_message
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    # ─────────────────────────────
    # Lifecycle
    # ─────────────────────────────
    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "ScoringWorker":
        if self.running:
            return self
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="scoring-worker", daemon=True
        )
        self._thread.start()
        return self

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def stop(self, timeout: Optional[float] = 5.0):
        if not self.running:
            return
        # Settle in-flight requests first so every posted future gets a response
        settled = asyncio.run_coroutine_threadsafe(self._cancel_pending(), self._loop)
        try:
            settled.result(timeout)
        except FutureTimeoutError:
            logger.warning("In-flight requests did not settle within %ss", timeout)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        self._loop.close()
        self.task.close()
        self._thread = None
        self._loop = None

    async def _cancel_pending(self):
        current = asyncio.current_task()
        pending = [t for t in asyncio.all_tasks() if t is not current]
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.stop()

    # ─────────────────────────────
    # Messaging
    # ─────────────────────────────
    def post_message(self, data: dict) -> Future:
        """Queue one request; the future resolves to the response dict."""
        if not self.running:
            raise RuntimeError("ScoringWorker is not running; call start() first")
        return asyncio.run_coroutine_threadsafe(self._dispatch(data), self._loop)

    async def _dispatch(self, data: dict) -> dict:
        try:
            response = await self.handle_message(data)
        except asyncio.CancelledError:
            # stop() cancelled this request; answer it instead of dropping it
            response = ScoringResponse.failure(
                "WorkerStopped", "Scoring worker stopped before the request finished"
            ).model_dump(mode="json")
        if self.on_message is not None:
            try:
                self.on_message(response)
            except Exception:
                logger.exception("on_message callback failed")
        return response

    async def handle_message(self, data: dict) -> dict:
        """Validate one request, run the scoring task, build exactly one response."""
        try:
            request = ScoringRequest.model_validate(data)
        except ValidationError as e:
            return ScoringResponse.failure("InvalidRequest", str(e)).model_dump(mode="json")

        try:
            result = await self.task.run(request.query_image, request.ans_image)
        except ScoringError as e:
            response = ScoringResponse.failure(type(e).__name__, str(e))
        except Exception as e:
            logger.exception("Unexpected scoring failure")
            response = ScoringResponse.failure(type(e).__name__, str(e))
        else:
            response = ScoringResponse.complete(result.score, result.outcome)
        return response.model_dump(mode="json")
