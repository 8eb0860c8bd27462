"""
models/model_cache.py
---------------------
Process-wide lazy holder for the preprocessor + vision encoder pair.

Each component sits in a one-shot slot: the first caller builds it, callers
arriving mid-build wait on the same future, everyone after that gets the
cached object. A failed build is cached too and re-raised to every caller
until reset() is called.
"""

import sys
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Tuple

from game_core.errors import CacheConstructionError
from game_core.logger import log_event, setup_logger
from game_core.settings import ScoringSettings, get_settings

logger = setup_logger()

# Attached to `sys` so a reloaded copy of this module finds the same caches
_REGISTRY_ATTR = "_sketchmatch_model_caches"
_local_registry: Dict[str, "ModelCache"] = {}
_registry_lock = threading.Lock()


class _Slot:
    """One-shot coalescing construction of a single component."""

    def __init__(self, name: str, factory: Callable[[], Any]):
        self.name = name
        self.factory = factory
        self._lock = threading.Lock()
        self._future: Optional[Future] = None

    @property
    def ready(self) -> bool:
        fut = self._future
        return fut is not None and fut.done() and fut.exception() is None

    def get(self, key: str):
        with self._lock:
            fut = self._future
            owner = fut is None
            if owner:
                fut = self._future = Future()

        if owner:
            self._build(fut, key)
        return fut.result()

    def _build(self, fut: Future, key: str):
        t0 = time.perf_counter()
        try:
            value = self.factory()
        except Exception as e:
            err = CacheConstructionError(self.name, key, repr(e))
            err.__cause__ = e
            fut.set_exception(err)
            logger.error("Failed to build %s for %s: %r", self.name, key, e)
            log_event("model_cache_failed", {"component": self.name, "key": key, "error": repr(e)})
            return
        except BaseException as e:
            # Interrupted, not failed: release the waiters and let the next caller rebuild
            err = CacheConstructionError(self.name, key, f"interrupted: {e!r}")
            err.__cause__ = e
            fut.set_exception(err)
            with self._lock:
                if self._future is fut:
                    self._future = None
            logger.warning("Build of %s for %s interrupted: %r", self.name, key, e)
            raise
        fut.set_result(value)
        latency = (time.perf_counter() - t0) * 1000
        logger.info("Built %s for %s in %.0f ms", self.name, key, latency)
        log_event("model_cache_built", {
            "component": self.name,
            "key": key,
            "latency_ms": round(latency, 2),
        })

    def reset(self, failed_only: bool = True):
        with self._lock:
            if self._future is None or not self._future.done():
                return
            if failed_only and self._future.exception() is None:
                return
            self._future = None


class ModelCache:
    """Holds (preprocessor, encoder); each is constructed at most once."""

    def __init__(
        self,
        preprocessor_factory: Callable[[], Any],
        encoder_factory: Callable[[], Any],
        key: str = "default",
    ):
        self.key = key
        self._preprocessor = _Slot("preprocessor", preprocessor_factory)
        self._encoder = _Slot("encoder", encoder_factory)

    @classmethod
    def from_settings(cls, settings: ScoringSettings) -> "ModelCache":
        from models.vision_encoder import get_component_factories

        preprocessor_factory, encoder_factory = get_component_factories(settings)
        return cls(preprocessor_factory, encoder_factory, key=settings.cache_key)

    @property
    def is_ready(self) -> bool:
        return self._preprocessor.ready and self._encoder.ready

    def get_instance(self) -> Tuple[Any, Any]:
        """
        Return the (preprocessor, encoder) pair, building each on first demand.
        Raises CacheConstructionError if either component failed to build.
        """
        processor = self._preprocessor.get(self.key)
        encoder = self._encoder.get(self.key)
        return processor, encoder

    def reset(self, failed_only: bool = True):
        """Forget failed builds (or everything) so the next call rebuilds."""
        self._preprocessor.reset(failed_only)
        self._encoder.reset(failed_only)

    def __repr__(self):
        return f"ModelCache(key={self.key!r}, ready={self.is_ready})"


def _registry(pinned: bool) -> Dict[str, ModelCache]:
    if not pinned:
        return _local_registry
    # setdefault installs the dict exactly once per process
    return sys.__dict__.setdefault(_REGISTRY_ATTR, {})


def get_model_cache(settings: Optional[ScoringSettings] = None) -> ModelCache:
    """Return the process-wide cache for the configured backend and model."""
    settings = settings or get_settings()
    registry = _registry(settings.pin_cache_across_reloads)
    key = settings.cache_key
    with _registry_lock:
        cache = registry.get(key)
        if cache is None:
            cache = registry[key] = ModelCache.from_settings(settings)
    return cache


def clear_model_caches():
    """Drop every registered cache. Intended for tests and shutdown hooks."""
    with _registry_lock:
        _local_registry.clear()
        sys.__dict__.get(_REGISTRY_ATTR, {}).clear()
