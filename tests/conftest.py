"""
Shared fixtures for the notification clock tests.

- store: LocalStore in a temporary directory
- clock: manual millisecond clock
- remote: in-memory stand-in for the Supabase service
- delivered: list collecting everything the clock delivered
"""

import pytest

from errors import RemoteUnavailable
from local_store import LocalStore
from models import Notification

NOW = 1_700_000_000_000


class ManualClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeRemote:
    """Records every call; failures are switched on per operation."""

    def __init__(self):
        self.rows = {}
        self.next_id = 100
        self.calls = []
        self.fetch_error = None
        self.delete_results = {False: True, True: True}
        self.delete_error = None
        self.admin_status = False
        self.admin_error = None
        self.upload_error = None

    def add(self, title, fire_at, payload=None):
        self.next_id += 1
        self.rows[self.next_id] = Notification(
            title=title, fire_at=fire_at, payload=payload, remote_id=self.next_id
        )
        return self.next_id

    def fetch_all(self):
        self.calls.append(("fetch_all",))
        if self.fetch_error:
            raise self.fetch_error
        return list(self.rows.values())

    def upload(self, notification):
        self.calls.append(("upload", notification.title))
        if self.upload_error:
            raise self.upload_error
        return self.add(notification.title, notification.fire_at, notification.payload)

    def delete(self, ids, privileged=False):
        self.calls.append(("delete", tuple(ids), privileged))
        if self.delete_error:
            raise self.delete_error
        ok = self.delete_results[privileged]
        if ok:
            for i in ids:
                self.rows.pop(i, None)
        return ok

    def fetch_admin_status(self):
        self.calls.append(("fetch_admin_status",))
        if self.admin_error:
            raise self.admin_error
        return self.admin_status

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)

    def deletes(self):
        return [c for c in self.calls if c[0] == "delete"]


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "alarms.db")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def unreachable():
    return RemoteUnavailable("connection refused")


@pytest.fixture
def delivered():
    return []
