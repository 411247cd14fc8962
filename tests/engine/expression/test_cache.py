# tests/engine/expression/test_cache.py
import pytest

from uiflow.engine.expression import ExpressionCache, ExpressionEngine

def test_lru_evicts_least_recently_used():
    cache = ExpressionCache(maxsize=2)
    cache.put("a", 1)
    cache.put("b", 2)
    assert cache.get("a") == 1
    cache.put("c", 3)

    assert "a" in cache
    assert "b" not in cache
    assert "c" in cache
    assert len(cache) == 2

def test_cache_counts_hits_and_misses():
    cache = ExpressionCache(maxsize=4)
    assert cache.get("x") is None
    cache.put("x", 1)
    cache.get("x")
    assert (cache.hits, cache.misses) == (1, 1)

    cache.clear()
    assert len(cache) == 0
    assert (cache.hits, cache.misses) == (0, 0)

def test_invalid_size():
    with pytest.raises(ValueError):
        ExpressionCache(maxsize=0)

def test_engine_reuses_compiled_expression():
    engine = ExpressionEngine(cache_size=8)
    first = engine.compile("{{formData.a}} + 1")
    second = engine.compile("{{formData.a}} + 1")
    assert first is second
    assert engine.cache.hits == 1

def test_engine_cache_is_bounded():
    engine = ExpressionEngine(cache_size=2)
    for i in range(5):
        engine.compile(f"formData.a + {i}")
    assert len(engine.cache) == 2

def test_engines_do_not_share_caches():
    a, b = ExpressionEngine(), ExpressionEngine()
    a.compile("formData.x")
    assert ("expression", "formData.x") in a.cache
    assert ("expression", "formData.x") not in b.cache
