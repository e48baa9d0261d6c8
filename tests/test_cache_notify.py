from __future__ import annotations
import threading

from blueprints.directory.cache import ReferenceDataCache
from blueprints.schedule.notify import Notification, NotificationDispatcher


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# ---------- кэш справочников ----------
def test_cache_expires_after_ttl():
    clock = FakeClock()
    cache = ReferenceDataCache(ttl_seconds=60, clock=clock)
    cache.set("rooms", {1: "Зал 1"})
    assert cache.get("rooms") == {1: "Зал 1"}

    clock.now += 59
    assert cache.get("rooms") is not None
    clock.now += 1
    assert cache.get("rooms") is None

    stats = cache.stats()
    assert stats["total"] == 1
    assert stats["expired"] == 1
    assert stats["active"] == 0
    assert stats["hits"] == 2
    assert stats["misses"] == 1


def test_get_or_load_calls_loader_once_per_ttl():
    clock = FakeClock()
    cache = ReferenceDataCache(ttl_seconds=10, clock=clock)
    calls = []

    def loader():
        calls.append(1)
        return {"n": len(calls)}

    assert cache.get_or_load("groups", loader) == {"n": 1}
    assert cache.get_or_load("groups", loader) == {"n": 1}
    clock.now += 11
    assert cache.get_or_load("groups", loader) == {"n": 2}
    assert len(calls) == 2


def test_invalidate_and_clear():
    cache = ReferenceDataCache()
    cache.warm_up({"groups": lambda: [1], "rooms": lambda: [2]})
    cache.invalidate("groups")
    assert cache.get("groups") is None
    assert cache.get("rooms") == [2]
    cache.clear()
    assert cache.stats()["total"] == 0


def test_lookup_endpoints(client, refs):
    r = client.get("/api/v1/lookup?kinds=rooms,teachers")
    assert r.status_code == 200
    body = r.get_json()
    assert [room["name"] for room in body["rooms"]] == ["Зал 1", "Зал 2"]
    assert body["teachers"][0]["name"] == "Анна Петрова"
    assert "groups" not in body

    assert client.get("/api/v1/lookup?kinds=planets").status_code == 400
    assert client.get("/api/v1/lookup/stats").get_json()["total"] == 2

    assert client.post("/api/v1/lookup/invalidate", json={}).status_code == 200
    assert client.get("/api/v1/lookup/stats").get_json()["total"] == 0


# ---------- уведомления ----------
def test_sync_dispatch_reports_failures():
    sent, failed = [], []

    def sender(note):
        if note.schedule_id == 2:
            raise ValueError("no recipient")
        sent.append(note.schedule_id)

    d = NotificationDispatcher(sender=sender, sync=True, on_error=lambda n, e: failed.append(n.schedule_id))
    for sid in (1, 2, 3):
        assert d.dispatch(Notification("schedule_updated", sid)) is None
    assert sent == [1, 3]
    assert failed == [2]
    assert d.failures == 1


def test_async_dispatch_failure_goes_to_channel():
    done = threading.Event()
    failed = []

    def sender(note):
        raise ConnectionError("gateway timeout")

    def on_error(note, exc):
        failed.append((note.kind, type(exc).__name__))
        done.set()

    d = NotificationDispatcher(sender=sender, max_workers=1, on_error=on_error)
    fut = d.dispatch(Notification("schedule_cancelled", 7))
    assert fut is not None
    assert done.wait(5)
    d.shutdown(wait=True)
    assert failed == [("schedule_cancelled", "ConnectionError")]
    assert d.failures == 1


def test_async_dispatch_runs_in_app_context(app):
    from flask import current_app
    seen = []

    d = NotificationDispatcher(app, sender=lambda note: seen.append(current_app.name), max_workers=1)
    d.dispatch(Notification("schedule_updated", 1)).result(timeout=5)
    d.shutdown(wait=True)
    assert seen == [app.name]
    assert d.failures == 0
