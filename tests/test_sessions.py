from __future__ import annotations

from sessions import ROLE_EDITOR, ROLE_GUEST, SessionStore, hash_secret, verify_secret


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_sessions_without_ttl_never_expire():
    clock = FakeClock()
    store = SessionStore(clock=clock)
    s = store.create("admin", ROLE_EDITOR)
    clock.now += 10**9
    assert store.get(s.sid) is s
    assert s.is_editor


def test_expired_sessions_are_evicted_on_access():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    s = store.create("guest", ROLE_GUEST)
    clock.now += 59
    assert store.get(s.sid) is s
    clock.now += 1
    assert store.get(s.sid) is None
    assert len(store) == 0


def test_purge_and_delete():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=10, clock=clock)
    old = store.create("guest", ROLE_GUEST)
    clock.now += 20
    assert store.purge_expired() == 1
    assert store.get(old.sid) is None
    fresh = store.create("admin", ROLE_EDITOR)
    store.delete(fresh.sid)
    store.delete(None)
    assert store.get(fresh.sid) is None
    assert store.get("") is None


def test_public_view_hides_sid():
    s = SessionStore().create("admin", ROLE_EDITOR)
    assert s.public() == {"username": "admin", "role": ROLE_EDITOR, "created": s.created}


def test_secret_verification():
    hashed = hash_secret("hunter2")
    assert verify_secret("hunter2", hashed)
    assert not verify_secret("hunter3", hashed)
    assert not verify_secret(None, hashed)
    assert not verify_secret("hunter2", None)
    assert not verify_secret(12345, hashed)
    assert not verify_secret(["hunter2"], hashed)


def test_create_purges_expired_sessions():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=10, clock=clock)
    for _ in range(3):
        store.create("guest", ROLE_GUEST)
    clock.now += 10
    fresh = store.create("guest", ROLE_GUEST)
    assert len(store) == 1
    assert store.get(fresh.sid) is fresh


def test_oldest_sessions_evicted_past_capacity():
    store = SessionStore(max_sessions=2)
    first = store.create("guest", ROLE_GUEST)
    second = store.create("guest", ROLE_GUEST)
    third = store.create("admin", ROLE_EDITOR)
    assert len(store) == 2
    assert store.get(first.sid) is None
    assert store.get(second.sid) is second
    assert store.get(third.sid) is third
