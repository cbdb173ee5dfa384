from relay_admin.utils.cache import TTLCache


class _Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_cached_none_is_a_hit():
    cache: TTLCache[str, None] = TTLCache(30)
    cache.set("ab", None)
    assert cache.lookup("ab") == (True, None)
    assert cache.lookup("cd") == (False, None)


def test_entries_expire():
    clock = _Clock()
    cache = TTLCache(30, clock=clock)
    cache.set("ab", {"action": "SAFE"})
    clock.now += 31
    assert cache.lookup("ab") == (False, None)


def test_set_drops_expired_entries_for_other_keys():
    clock = _Clock()
    cache = TTLCache(30, clock=clock)
    for i in range(50):
        cache.set(f"old-{i}", i)
    clock.now += 31

    cache.set("fresh", 1)

    assert len(cache) == 1
    assert cache.get("fresh") == 1


def test_size_is_capped_oldest_first():
    cache = TTLCache(30, max_entries=3)
    for key in ("a", "b", "c", "d"):
        cache.set(key, key)

    assert len(cache) == 3
    assert cache.lookup("a") == (False, None)
    assert cache.get("d") == "d"


def test_resetting_a_key_refreshes_its_position():
    cache = TTLCache(30, max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 3)
    cache.set("c", 4)

    assert cache.get("a") == 3
    assert cache.lookup("b") == (False, None)
