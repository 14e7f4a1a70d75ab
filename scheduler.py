# scheduler.py
"""
Notification clock - the loop that decides what fires and when.

Each iteration:
    1. run commands handed over by the front end
    2. sync with the remote service (gated by SyncCoordinator)
    3. top the due queue up from the local db
    4. fire everything due: deliver, delete locally, delete remotely
    5. sleep one poll interval

The due queue and the admin cache belong to the worker thread. Other threads
talk to the clock through submit() and stop() only.
"""
import logging
import queue
import threading
import time
from concurrent.futures import Future

import config
from admin_cache import AdminPrivilegeCache
from due_queue import DueQueue
from errors import LocalStoreError, RemoteError, Unauthorized
from models import Notification, now_millis
from notifier import deliver as show_notification
from sync import SyncCoordinator

logger = logging.getLogger("scheduler")

STOPPED = "stopped"
RUNNING = "running"


class NotificationScheduler:
    """Fires notifications from the local db, kept in sync with the remote service."""

    def __init__(self, store, remote=None, deliver=None,
                 poll_interval=config.POLL_INTERVAL,
                 delta_ms=config.DUE_DELTA_MS,
                 sample_size=config.SAMPLE_SIZE,
                 low_watermark=config.LOW_WATERMARK,
                 sync_interval=config.SYNC_INTERVAL,
                 clock=now_millis, sleep=time.sleep):
        self.store = store
        self.remote = remote if remote is not None and getattr(remote, "is_configured", True) else None
        self.deliver = deliver or show_notification
        self.poll_interval = poll_interval
        self.delta_ms = delta_ms
        self.sample_size = sample_size
        self.clock = clock
        self.sleep = sleep

        self.queue = DueQueue()
        self.admin_cache = AdminPrivilegeCache(self.remote)
        self.sync = None
        if self.remote is not None:
            self.sync = SyncCoordinator(
                self.remote, self.queue, admin_cache=self.admin_cache,
                low_watermark=low_watermark,
                sync_interval_ms=int(sync_interval * 1000),
                clock=clock,
            )

        self._commands = queue.Queue()
        self._stop_event = threading.Event()
        self._state = STOPPED
        self._thread = None
        self._cycle = 0
        # Delivered, but the local delete failed; only the delete is retried.
        self._awaiting_local_delete = set()

    # -----------------------------
    # LIFECYCLE
    # -----------------------------
    @property
    def state(self):
        return self._state

    @property
    def online(self):
        return self.remote is not None

    def start(self):
        """Run the clock on a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            if not self._stop_event.is_set():
                logger.warning("Clock already running")
                return
            # Stopping, but not finished yet; let the old worker exit first.
            self._thread.join()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, daemon=True, name="notification-clock")
        self._thread.start()

    def stop(self):
        """Ask the loop to stop at the top of its next iteration."""
        self._stop_event.set()

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self):
        self._state = RUNNING
        logger.info("Notification clock started (online=%s)", self.online)
        try:
            while not self._stop_event.is_set():
                try:
                    self.run_once()
                except Exception:
                    logger.exception("Clock cycle %d failed", self._cycle)
                if self._stop_event.is_set():
                    break
                self.sleep(self.poll_interval)
        finally:
            self._state = STOPPED
            self._cancel_pending_commands()
            logger.info("Notification clock stopped after %d cycles", self._cycle)

    def run_once(self):
        """One clock iteration. Returns the notifications that were due."""
        self._cycle += 1
        logger.debug("Running clock cycle %d", self._cycle)

        self._run_commands()
        self._reconcile()
        self._replenish()

        due = self.queue.drain_due(self.clock(), self.delta_ms)
        for notification in due:
            try:
                self._fire(notification)
            except Exception:
                logger.exception("Failed to fire notification %s", notification.local_id)
        return due

    # -----------------------------
    # ITERATION STEPS
    # -----------------------------
    def _reconcile(self):
        if self.sync is None:
            return
        try:
            self.sync.reconcile(self.store)
        except Exception:
            logger.exception("Sync failed")

    def _replenish(self):
        try:
            sample = self.store.find_earliest(self.sample_size)
        except LocalStoreError:
            logger.exception("Failed to load notifications from db")
            return
        added = sum(1 for n in sample if self.queue.offer(n))
        if added:
            logger.info("Queued %d notifications from db", added)

    def _fire(self, notification):
        local_id = notification.local_id
        if local_id in self._awaiting_local_delete:
            logger.info("Retrying db delete for already delivered notification %s", local_id)
        else:
            logger.info("Notification is due: %s", notification.describe())
            try:
                self.deliver(notification)
            except Exception:
                logger.exception("Delivery callback failed for %s", local_id)

        try:
            self.store.delete_by_id(local_id)
        except LocalStoreError:
            logger.exception("Failed to delete notification %s from db; will retry", local_id)
            self._awaiting_local_delete.add(local_id)
            self.queue.offer(notification)
            return
        self._awaiting_local_delete.discard(local_id)

        if notification.remote_id is not None:
            if self.sync is not None:
                self.sync.mark_fired(notification.remote_id)
            self._delete_remote([notification.remote_id])

    def _remote_delete(self, ids, privileged):
        try:
            return self.remote.delete(ids, privileged=privileged)
        except Unauthorized as e:
            logger.warning("Remote delete of %s unauthorized: %s", ids, e)
            self.admin_cache.pin(False)
        except RemoteError as e:
            logger.warning("Remote delete of %s failed: %s", ids, e)
        return False

    def _delete_remote(self, ids):
        """Best-effort remote delete, escalating to the admin endpoint once."""
        if self.remote is None:
            logger.info("Offline; notifications %s stay on the remote service", ids)
            return False
        if self._remote_delete(ids, privileged=False):
            logger.info("Deleted notifications %s on remote server", ids)
            self._remote_deleted(ids)
            return True
        if self.admin_cache.is_admin():
            logger.info("Retrying deletion of %s via admin endpoint", ids)
            if self._remote_delete(ids, privileged=True):
                logger.info("Deleted notifications %s on remote server via admin endpoint", ids)
                self._remote_deleted(ids)
                return True
        logger.warning("Failed to delete notifications %s on remote server", ids)
        return False

    def _remote_deleted(self, ids):
        if self.sync is not None:
            self.sync.forget(ids)

    # -----------------------------
    # COMMANDS (cross-thread)
    # -----------------------------
    def submit(self, fn, *args, **kwargs):
        """Hand a callable to the clock thread. Returns a Future for its result."""
        future = Future()
        self._commands.put((future, fn, args, kwargs))
        return future

    def _run_commands(self):
        while True:
            try:
                future, fn, args, kwargs = self._commands.get_nowait()
            except queue.Empty:
                return
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                logger.exception("Command %s failed", getattr(fn, "__name__", fn))
                future.set_exception(e)

    def _cancel_pending_commands(self):
        while True:
            try:
                future, _, _, _ = self._commands.get_nowait()
            except queue.Empty:
                return
            future.cancel()

    def add_notification(self, title, fire_at, payload=None, upload=False):
        return self.submit(self._add_notification, title, fire_at, payload, upload)

    def delete_notifications(self, remote_ids):
        return self.submit(self._delete_notifications, list(remote_ids))

    def list_remote(self):
        return self.submit(self._list_remote)

    def pending(self):
        """Queued notifications in firing order."""
        return self.submit(self.queue.snapshot)

    def admin_status(self):
        return self.submit(self.admin_cache.is_admin)

    def reset_admin(self):
        return self.submit(self.admin_cache.reset)

    def _add_notification(self, title, fire_at, payload, upload):
        notification = Notification(title=title, fire_at=fire_at, payload=payload)
        if upload:
            if self.remote is None:
                logger.warning("Offline; notification %r kept locally only", title)
            else:
                try:
                    remote_id = self.remote.upload(notification)
                except RemoteError as e:
                    logger.warning("Failed to send notification to remote service: %s", e)
                    remote_id = None
                if remote_id is not None:
                    notification = notification.with_ids(remote_id=remote_id)
        local_id = self.store.insert(notification)
        notification = notification.with_ids(local_id=local_id)
        logger.info("Added notification %s", notification.describe())
        return notification

    def _delete_notifications(self, remote_ids):
        """Remove notifications everywhere by remote id. Returns True if the remote delete worked."""
        for remote_id in remote_ids:
            local_id = self.store.delete_by_remote_id(remote_id)
            if local_id is not None:
                self.queue.remove(local_id)
                self._awaiting_local_delete.discard(local_id)
            if self.sync is not None:
                self.sync.mark_fired(remote_id)
        return self._delete_remote(remote_ids)

    def _list_remote(self):
        if self.remote is None:
            return []
        return self.remote.fetch_all()
