from signin_sentry.dedup import DedupStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_add_and_contains():
    store = DedupStore()
    store.add("sig-1")
    store.add("sig-1")
    assert store.contains("sig-1")
    assert "sig-1" in store
    assert not store.contains("sig-2")
    assert len(store) == 1


def test_no_ttl_never_evicts():
    clock = FakeClock()
    store = DedupStore(ttl_seconds=None, clock=clock)
    store.add("sig-1")
    clock.now += 10 ** 9
    assert store.evict_expired() == 0
    assert store.contains("sig-1")


def test_evicts_only_entries_older_than_ttl():
    clock = FakeClock()
    store = DedupStore(ttl_seconds=3600, clock=clock)
    store.add("old")
    clock.now += 1800
    store.add("young")

    clock.now += 1800
    assert store.evict_expired() == 1
    assert not store.contains("old")
    assert store.contains("young")

    clock.now += 1800
    assert store.evict_expired() == 1
    assert len(store) == 0


def test_re_adding_does_not_refresh_insert_time():
    clock = FakeClock()
    store = DedupStore(ttl_seconds=100, clock=clock)
    store.add("sig")
    clock.now += 60
    store.add("sig")
    clock.now += 50
    store.evict_expired()
    assert not store.contains("sig")
