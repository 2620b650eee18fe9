"""
Tests for the listing cache with an injected clock.
"""

from citysync.common.cache import ViewCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ViewCache(ttl_seconds=60, clock=clock)

    cache.set(("org-1", "citizens"), [1, 2])
    clock.now += 59
    assert cache.get(("org-1", "citizens")) == [1, 2]

    clock.now += 1
    assert cache.get(("org-1", "citizens")) is None


def test_get_or_load_reads_through_once():
    cache = ViewCache(ttl_seconds=60, clock=FakeClock())
    calls = []

    def loader():
        calls.append(1)
        return ["row"]

    assert cache.get_or_load(("org-1", "vehicles"), loader) == ["row"]
    assert cache.get_or_load(("org-1", "vehicles"), loader) == ["row"]
    assert len(calls) == 1


def test_empty_listing_is_cached():
    cache = ViewCache(ttl_seconds=60, clock=FakeClock())
    calls = []

    def loader():
        calls.append(1)
        return []

    cache.get_or_load(("org-1", "citizens"), loader)
    cache.get_or_load(("org-1", "citizens"), loader)

    assert len(calls) == 1


def test_invalidate_by_prefix():
    cache = ViewCache(ttl_seconds=60, clock=FakeClock())
    cache.set(("org-1", "citizens"), ["a"])
    cache.set(("org-1", "vehicles"), ["b"])
    cache.set(("org-2", "citizens"), ["c"])

    assert cache.invalidate("org-1", "citizens") == 1
    assert cache.get(("org-1", "citizens")) is None
    assert cache.get(("org-1", "vehicles")) == ["b"]

    assert cache.invalidate("org-1") == 1
    assert cache.get(("org-2", "citizens")) == ["c"]


def test_load_overlapping_invalidation_is_not_cached():
    cache = ViewCache(ttl_seconds=60, clock=FakeClock())

    def loader():
        # A sync commits and invalidates while the listing is being read
        cache.invalidate("org-1", "citizens")
        return ["pre-sync"]

    assert cache.get_or_load(("org-1", "citizens"), loader) == ["pre-sync"]
    assert cache.get(("org-1", "citizens")) is None

    assert cache.get_or_load(("org-1", "citizens"), lambda: ["post-sync"]) == ["post-sync"]
    assert cache.get(("org-1", "citizens")) == ["post-sync"]


def test_invalidation_of_other_keys_does_not_discard_load():
    cache = ViewCache(ttl_seconds=60, clock=FakeClock())

    def loader():
        cache.invalidate("org-2")
        return ["a"]

    cache.get_or_load(("org-1", "vehicles"), loader)

    assert cache.get(("org-1", "vehicles")) == ["a"]
