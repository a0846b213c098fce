import threading

import pytest

from cachingproxy.cache import (
    ELEMENT_OVERHEAD,
    MAX_ELEMENT_SIZE,
    MAX_SIZE,
    CacheElement,
    LRUCache,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        self.now += 1.0
        return self.now


def make_cache(max_size=MAX_SIZE, max_element_size=MAX_ELEMENT_SIZE):
    return LRUCache(max_size, max_element_size, FakeClock())


def test_default_limits_match_source():
    cache = LRUCache()
    assert cache.max_size == 200 * (1 << 20)
    assert cache.max_element_size == 10 * (1 << 20)


def test_empty_cache_finds_nothing():
    cache = make_cache()
    assert cache.find("GET / HTTP/1.1\r\n\r\n") is None
    assert len(cache) == 0
    assert cache.remove_oldest() is None


def test_add_then_find_returns_data():
    cache = make_cache()
    assert cache.add(b"HTTP/1.1 200 OK\r\n\r\nhello", "req-a") is True
    element = cache.find("req-a")
    assert isinstance(element, CacheElement)
    assert element.data == b"HTTP/1.1 200 OK\r\n\r\nhello"
    assert element.len == len(b"HTTP/1.1 200 OK\r\n\r\nhello")
    assert "req-a" in cache
    assert "req-b" not in cache


def test_string_data_is_stored_as_bytes():
    cache = make_cache()
    cache.add("body", "k")
    assert cache.find("k").data == b"body"


def test_size_accounting_round_trip():
    cache = make_cache()
    cache.add(b"abcdef", "url1")
    cache.add(b"xy", "u2")
    expected = (6 + 1 + 4 + ELEMENT_OVERHEAD) + (2 + 1 + 2 + ELEMENT_OVERHEAD)
    assert cache.size == expected
    cache.remove_oldest()
    cache.remove_oldest()
    assert cache.size == 0
    assert len(cache) == 0


def test_oversized_element_rejected():
    cache = make_cache(max_size=1000, max_element_size=100)
    assert cache.add(b"x" * 100, "big") is False
    assert "big" not in cache
    assert cache.size == 0


def test_remove_oldest_evicts_least_recently_used():
    cache = make_cache()
    cache.add(b"1", "a")
    cache.add(b"2", "b")
    cache.add(b"3", "c")
    cache.find("a")  # a becomes most recent
    removed = cache.remove_oldest()
    assert removed.url == "b"
    assert "b" not in cache
    assert len(cache) == 2


def test_find_updates_lru_time():
    clock = FakeClock()
    cache = LRUCache(MAX_SIZE, MAX_ELEMENT_SIZE, clock)
    cache.add(b"data", "k")
    before = cache.find("k").lru_time_track
    after = cache.find("k").lru_time_track
    assert after > before


def test_add_evicts_until_space():
    element_size = 10 + 1 + 1 + ELEMENT_OVERHEAD
    cache = make_cache(max_size=element_size * 2, max_element_size=element_size)
    assert cache.add(b"0" * 10, "a")
    assert cache.add(b"1" * 10, "b")
    assert cache.add(b"2" * 10, "c")
    assert "a" not in cache
    assert "b" in cache and "c" in cache
    assert cache.size <= cache.max_size


def test_duplicate_keys_find_newest():
    cache = make_cache()
    cache.add(b"old", "k")
    cache.add(b"new", "k")
    assert len(cache) == 2
    assert cache.find("k").data == b"new"


def test_bytes_keys_supported():
    cache = make_cache()
    cache.add(b"resp", b"GET / HTTP/1.0\r\n\r\n")
    assert cache.find(b"GET / HTTP/1.0\r\n\r\n").data == b"resp"


@pytest.mark.parametrize("count", [1, 5, 20])
def test_size_never_exceeds_limit(count):
    cache = make_cache(max_size=300, max_element_size=300)
    for index in range(count):
        cache.add(b"z" * 50, f"key{index}")
        assert cache.size <= 300
    assert len(cache) >= 1


def test_concurrent_adds_are_consistent():
    cache = make_cache()

    def worker(prefix):
        for index in range(50):
            cache.add(b"payload", f"{prefix}-{index}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(cache) == 200
    assert cache.size == sum(
        cache.find(f"{n}-{i}").charged_size for n in range(4) for i in range(50)
    )