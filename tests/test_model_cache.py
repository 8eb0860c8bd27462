import importlib
import sys
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest

import models.model_cache as model_cache
from conftest import CountingFactory
from game_core.errors import CacheConstructionError
from game_core.settings import ScoringSettings
from models.model_cache import ModelCache, get_model_cache
from models.vision_encoder import get_component_factories


def test_concurrent_first_calls_construct_once():
    processor, encoder = object(), object()
    make_processor = CountingFactory(processor, delay=0.2)
    make_encoder = CountingFactory(encoder, delay=0.2)
    cache = ModelCache(make_processor, make_encoder, key="count")

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: cache.get_instance(), range(32)))

    assert make_processor.calls == 1
    assert make_encoder.calls == 1
    assert all(r[0] is processor and r[1] is encoder for r in results)
    assert cache.is_ready


def test_lazy_until_first_call():
    make_processor = CountingFactory("p")
    make_encoder = CountingFactory("e")
    cache = ModelCache(make_processor, make_encoder)
    assert make_processor.calls == 0 and make_encoder.calls == 0
    assert not cache.is_ready
    assert cache.get_instance() == ("p", "e")
    assert cache.get_instance() == ("p", "e")
    assert make_processor.calls == 1 and make_encoder.calls == 1


def test_failure_reaches_every_caller_and_is_not_rebuilt():
    make_encoder = CountingFactory(None, delay=0.1, error=OSError("weights unavailable"))
    cache = ModelCache(CountingFactory("p"), make_encoder, key="broken")

    def attempt(_):
        try:
            cache.get_instance()
        except CacheConstructionError as e:
            return e
        return None

    with ThreadPoolExecutor(max_workers=8) as pool:
        errors = list(pool.map(attempt, range(8)))

    assert all(isinstance(e, CacheConstructionError) for e in errors)
    assert isinstance(errors[0].__cause__, OSError)
    assert errors[0].component == "encoder"
    assert "weights unavailable" in str(errors[0])

    with pytest.raises(CacheConstructionError):
        cache.get_instance()
    assert make_encoder.calls == 1
    assert not cache.is_ready


def test_reset_allows_retry_after_failure():
    make_encoder = CountingFactory("e", error=RuntimeError("offline"))
    make_processor = CountingFactory("p")
    cache = ModelCache(make_processor, make_encoder)
    with pytest.raises(CacheConstructionError):
        cache.get_instance()

    make_encoder.error = None
    cache.reset()
    assert cache.get_instance() == ("p", "e")
    assert make_encoder.calls == 2
    # successful components survive a failed-only reset
    assert make_processor.calls == 1


def test_interrupted_build_releases_waiters():
    make_encoder = CountingFactory("e", delay=0.2, error=SystemExit(1))
    cache = ModelCache(CountingFactory("p"), make_encoder, key="interrupted")

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(cache.get_instance) for _ in range(4)]
        outcomes = [f.exception(timeout=5) for f in futures]

    assert any(isinstance(e, SystemExit) for e in outcomes)
    assert all(isinstance(e, (SystemExit, CacheConstructionError)) for e in outcomes)

    # an interruption is not cached as a failure
    make_encoder.error = None
    assert cache.get_instance() == ("p", "e")


def test_reset_all_rebuilds_everything():
    make_processor = CountingFactory("p")
    cache = ModelCache(make_processor, CountingFactory("e"))
    cache.get_instance()
    cache.reset(failed_only=False)
    cache.get_instance()
    assert make_processor.calls == 2


def test_get_model_cache_is_shared_per_key():
    settings = ScoringSettings()
    first = get_model_cache(settings)
    assert get_model_cache(settings) is first
    other = get_model_cache(ScoringSettings(backend="open_clip"))
    assert other is not first
    assert other.key.startswith("open_clip:")


def test_pinned_registry_survives_module_reload():
    settings = ScoringSettings(pin_cache_across_reloads=True)
    before = get_model_cache(settings)
    assert before is sys.__dict__[model_cache._REGISTRY_ATTR][settings.cache_key]

    reloaded = importlib.reload(model_cache)
    assert reloaded.get_model_cache(settings) is before


def test_unpinned_registry_is_module_local():
    settings = ScoringSettings(pin_cache_across_reloads=False)
    cache = model_cache.get_model_cache(settings)
    assert model_cache._local_registry[settings.cache_key] is cache
    assert settings.cache_key not in sys.__dict__.get(model_cache._REGISTRY_ATTR, {})


def test_unknown_backend_rejected():
    with pytest.raises(ValueError):
        get_component_factories(SimpleNamespace(backend="onnx"))


def test_factories_do_not_load_eagerly():
    preprocessor_factory, encoder_factory = get_component_factories(ScoringSettings())
    assert callable(preprocessor_factory) and callable(encoder_factory)
