import threading

import pytest

from errors import LocalStoreError, RemoteUnavailable, Unauthorized
from models import Notification
from scheduler import RUNNING, STOPPED, NotificationScheduler

from conftest import NOW


@pytest.fixture
def make_scheduler(store, clock, delivered):
    def factory(remote=None, **kwargs):
        kwargs.setdefault("poll_interval", 0.5)
        kwargs.setdefault("delta_ms", 1000)
        kwargs.setdefault("sample_size", 10)
        kwargs.setdefault("sleep", lambda seconds: None)
        return NotificationScheduler(
            store, remote=remote, deliver=delivered.append, clock=clock, **kwargs
        )
    return factory


def test_local_notification_fires_and_is_deleted(store, clock, delivered, make_scheduler):
    store.insert(Notification(title="Local", fire_at=NOW + 500))
    store.insert(Notification(title="Later", fire_at=NOW + 60_000))
    scheduler = make_scheduler()

    fired = scheduler.run_once()

    assert [n.title for n in fired] == ["Local"]
    assert [n.title for n in delivered] == ["Local"]
    assert store.count() == 1
    assert len(scheduler.queue) == 1


def test_not_due_yet_waits(store, clock, delivered, make_scheduler):
    store.insert(Notification(title="Soon", fire_at=NOW + 5000))
    scheduler = make_scheduler()
    scheduler.run_once()
    assert delivered == []
    clock.advance(4000)
    scheduler.run_once()
    assert [n.title for n in delivered] == ["Soon"]


def test_all_due_items_fire_in_one_iteration_in_order(store, delivered, make_scheduler):
    for title, offset in [("c", 300), ("a", -900), ("b", 0)]:
        store.insert(Notification(title=title, fire_at=NOW + offset))
    make_scheduler().run_once()
    assert [n.title for n in delivered] == ["a", "b", "c"]


def test_replenish_samples_and_dedups(store, make_scheduler):
    for i in range(15):
        store.insert(Notification(title=f"n{i}", fire_at=NOW + 100_000 + i))
    scheduler = make_scheduler(sample_size=10)
    scheduler.run_once()
    scheduler.run_once()
    assert len(scheduler.queue) == 10


def test_scenario_remote_overdue_is_imported_and_delivered(store, remote, delivered, make_scheduler):
    remote_id = remote.add("From web", NOW - 5000)
    scheduler = make_scheduler(remote)

    scheduler.run_once()

    assert [n.remote_id for n in delivered] == [remote_id]
    assert store.count() == 0
    assert remote.deletes() == [("delete", (remote_id,), False)]
    assert remote_id not in remote.rows


def test_scenario_same_remote_twice_keeps_single_copy(store, remote, make_scheduler):
    remote.add("Future", NOW + 3_600_000)
    scheduler = make_scheduler(remote)

    scheduler.run_once()
    scheduler.run_once()

    assert store.count() == 1
    assert len(scheduler.queue) == 1


def test_scenario_failed_delete_escalates_once_for_admin(store, remote, delivered, make_scheduler):
    remote_id = remote.add("Shared", NOW - 10)
    remote.delete_results[False] = False
    remote.admin_status = True
    scheduler = make_scheduler(remote)

    scheduler.run_once()

    assert remote.deletes() == [
        ("delete", (remote_id,), False),
        ("delete", (remote_id,), True),
    ]
    assert len(delivered) == 1


def test_failed_delete_without_admin_does_not_escalate(store, remote, make_scheduler):
    remote_id = remote.add("Shared", NOW - 10)
    remote.delete_results[False] = False
    remote.admin_status = False
    scheduler = make_scheduler(remote)

    scheduler.run_once()
    scheduler.run_once()

    assert remote.deletes() == [("delete", (remote_id,), False)]
    assert store.count() == 0
    assert remote_id in remote.rows


def test_admin_status_fetched_once_per_lifetime(store, remote, make_scheduler):
    remote.delete_results[False] = False
    remote.delete_results[True] = False
    remote.admin_status = True
    remote.add("a", NOW - 10)
    scheduler = make_scheduler(remote)
    scheduler.run_once()
    remote.add("b", NOW - 5)
    scheduler.run_once()
    assert remote.count("fetch_admin_status") == 1


def test_unauthorized_delete_pins_non_admin(store, remote, make_scheduler):
    remote.add("a", NOW - 10)
    remote.admin_status = True
    remote.delete_error = Unauthorized("401")
    scheduler = make_scheduler(remote)

    scheduler.run_once()

    assert remote.count("fetch_admin_status") == 0
    assert len(remote.deletes()) == 1
    assert scheduler.admin_cache.is_admin() is False


def test_scenario_remote_down_still_fires_local(store, remote, delivered, make_scheduler, unreachable):
    store.insert(Notification(title="Offline due", fire_at=NOW - 100))
    remote.fetch_error = unreachable
    scheduler = make_scheduler(remote)

    scheduler.run_once()

    assert [n.title for n in delivered] == ["Offline due"]
    assert store.count() == 0
    assert len(scheduler.queue) == 0


def test_remote_delete_error_keeps_local_delete(store, remote, delivered, make_scheduler):
    remote.add("x", NOW - 1)
    remote.delete_error = RemoteUnavailable("timeout")
    scheduler = make_scheduler(remote)
    scheduler.run_once()
    assert store.count() == 0
    assert len(delivered) == 1


def test_orphan_is_not_fired_again(store, remote, delivered, make_scheduler):
    remote.add("Orphan", NOW - 1)
    remote.delete_results[False] = False
    scheduler = make_scheduler(remote)
    scheduler.run_once()
    scheduler.run_once()
    assert len(delivered) == 1
    assert store.count() == 0


def test_delivery_error_does_not_stop_other_items(store, clock):
    seen = []

    def deliver(n):
        seen.append(n.title)
        if n.title == "boom":
            raise RuntimeError("display gone")

    store.insert(Notification(title="boom", fire_at=NOW - 2))
    store.insert(Notification(title="fine", fire_at=NOW - 1))
    scheduler = NotificationScheduler(store, deliver=deliver, clock=clock)

    scheduler.run_once()

    assert seen == ["boom", "fine"]
    assert store.count() == 0


def test_local_delete_failure_keeps_item_and_does_not_redeliver(store, delivered, make_scheduler, monkeypatch):
    local_id = store.insert(Notification(title="Sticky", fire_at=NOW - 1))
    other = store.insert(Notification(title="Other", fire_at=NOW))
    original = store.delete_by_id
    failures = {"left": 1}

    def flaky(target):
        if target == local_id and failures["left"]:
            failures["left"] -= 1
            raise LocalStoreError("database is locked")
        return original(target)

    monkeypatch.setattr(store, "delete_by_id", flaky)
    scheduler = make_scheduler()

    scheduler.run_once()
    assert local_id in scheduler.queue
    assert store.find_by_id(local_id) is not None
    assert store.find_by_id(other) is None

    scheduler.run_once()
    assert store.count() == 0
    assert [n.title for n in delivered] == ["Sticky", "Other"]


def test_store_read_failure_is_not_fatal(store, delivered, make_scheduler, monkeypatch):
    def broken(n):
        raise LocalStoreError("disk I/O error")

    monkeypatch.setattr(store, "find_earliest", broken)
    assert make_scheduler().run_once() == []


def test_add_notification_command(store, remote, make_scheduler):
    scheduler = make_scheduler(remote)
    future = scheduler.add_notification("Pay rent", NOW + 60_000, payload="flat", upload=True)
    assert not future.done()

    scheduler.run_once()

    added = future.result(timeout=1)
    assert added.local_id is not None
    assert added.remote_id in remote.rows
    assert store.find_by_id(added.local_id).remote_id == added.remote_id
    assert added.local_id in scheduler.queue


def test_add_notification_upload_failure_keeps_local(store, remote, make_scheduler, unreachable):
    remote.upload_error = unreachable
    scheduler = make_scheduler(remote)
    future = scheduler.add_notification("Local only", NOW + 60_000, upload=True)
    scheduler.run_once()
    added = future.result(timeout=1)
    assert added.remote_id is None
    assert store.count() == 1


def test_bad_command_reports_exception(make_scheduler):
    scheduler = make_scheduler()
    future = scheduler.add_notification("", NOW)
    scheduler.run_once()
    with pytest.raises(ValueError):
        future.result(timeout=1)


def test_delete_notifications_command(store, remote, make_scheduler):
    remote_id = remote.add("Drop me", NOW + 60_000)
    scheduler = make_scheduler(remote)
    scheduler.run_once()
    assert store.count() == 1

    future = scheduler.delete_notifications([remote_id])
    scheduler.run_once()

    assert future.result(timeout=1) is True
    assert store.count() == 0
    assert len(scheduler.queue) == 0
    assert remote_id not in remote.rows


def test_offline_scheduler_skips_remote(store, delivered, make_scheduler):
    store.insert(Notification(title="x", fire_at=NOW, remote_id=5))
    scheduler = make_scheduler()
    assert not scheduler.online
    listing = scheduler.list_remote()
    scheduler.run_once()
    assert len(delivered) == 1
    assert listing.result(timeout=1) == []


def test_start_and_stop_on_background_thread(store, remote, delivered):
    fired = threading.Event()

    def deliver(n):
        delivered.append(n)
        fired.set()

    store.insert(Notification(title="Threaded", fire_at=NOW - 1))
    scheduler = NotificationScheduler(store, remote=remote, deliver=deliver,
                                      poll_interval=0.01, clock=lambda: NOW)
    assert scheduler.state == STOPPED

    scheduler.start()
    assert fired.wait(timeout=5)
    assert scheduler.admin_status().result(timeout=5) is False
    assert scheduler.state == RUNNING

    scheduler.stop()
    scheduler.join(timeout=5)
    assert scheduler.state == STOPPED
    assert [n.title for n in delivered] == ["Threaded"]


def test_restart_right_after_stop_runs_again(store, remote):
    scheduler = NotificationScheduler(store, remote=remote, deliver=lambda n: None,
                                      poll_interval=0.01, clock=lambda: NOW)
    scheduler.start()
    assert scheduler.admin_status().result(timeout=5) is False

    scheduler.stop()
    scheduler.start()

    assert scheduler.list_remote().result(timeout=5) == []
    assert scheduler.state == RUNNING
    scheduler.stop()
    scheduler.join(timeout=5)
    assert scheduler.state == STOPPED


def test_fired_id_is_forgotten_once_remote_delete_succeeds(store, remote, make_scheduler):
    remote_id = remote.add("Gone", NOW - 1)
    scheduler = make_scheduler(remote)
    scheduler.run_once()
    assert remote_id not in remote.rows
    assert scheduler.sync.fired_remote_ids == set()


def test_fired_id_is_kept_while_remote_copy_survives(store, remote, delivered, make_scheduler):
    remote_id = remote.add("Stuck", NOW - 1)
    remote.delete_results[False] = False
    scheduler = make_scheduler(remote)
    scheduler.run_once()
    assert scheduler.sync.fired_remote_ids == {remote_id}

    remote.delete_results[False] = True
    assert scheduler.delete_notifications([remote_id]) is not None
    scheduler.run_once()
    assert scheduler.sync.fired_remote_ids == set()
    assert len(delivered) == 1


def test_pending_lists_queue_in_firing_order(store, make_scheduler):
    store.insert(Notification(title="second", fire_at=NOW + 20_000))
    store.insert(Notification(title="first", fire_at=NOW + 10_000))
    scheduler = make_scheduler()
    scheduler.run_once()
    pending = scheduler.pending()
    scheduler.run_once()
    assert [n.title for n in pending.result(timeout=1)] == ["first", "second"]
