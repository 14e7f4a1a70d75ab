# sync.py
"""
Pulls the remote notification list into the local db and the due queue.

Runs every clock tick while the queue is short, otherwise once per sync
interval. A failed fetch only skips the cycle.
"""
import logging

from errors import LocalStoreError, RemoteError, Unauthorized
from models import now_millis

logger = logging.getLogger("sync")


class SyncCoordinator:

    def __init__(self, remote, queue, admin_cache=None, low_watermark=3,
                 sync_interval_ms=30_000, clock=now_millis):
        self.remote = remote
        self.queue = queue
        self.admin_cache = admin_cache
        self.low_watermark = low_watermark
        self.sync_interval_ms = sync_interval_ms
        self.clock = clock
        self.last_sync = None
        # Remote ids already fired here; a failed remote delete must not bring them back.
        self.fired_remote_ids = set()

    def mark_fired(self, remote_id):
        self.fired_remote_ids.add(remote_id)

    def forget(self, remote_ids):
        """Drop ids whose remote copy is gone; they can no longer come back."""
        self.fired_remote_ids.difference_update(remote_ids)

    def should_run(self, now=None):
        if len(self.queue) < self.low_watermark:
            return True
        if self.last_sync is None:
            return True
        now = self.clock() if now is None else now
        return now - self.last_sync >= self.sync_interval_ms

    def reconcile(self, store, force=False):
        """Merge the remote view into the store and queue. Returns True if it ran."""
        now = self.clock()
        if not force and not self.should_run(now):
            return False
        self.last_sync = now

        try:
            remote_items = self.remote.fetch_all()
        except Unauthorized as e:
            logger.warning("Sync skipped, unauthorized: %s", e)
            if self.admin_cache is not None:
                self.admin_cache.pin(False)
            return False
        except RemoteError as e:
            logger.warning("Sync skipped, remote unavailable: %s", e)
            return False

        added = updated = 0
        for item in remote_items:
            if item.remote_id in self.fired_remote_ids:
                logger.debug("Remote notification %s already fired, skipping", item.remote_id)
                continue
            try:
                record = store.upsert_by_remote_id(item)
            except LocalStoreError:
                logger.exception("Failed to store remote notification %s", item.remote_id)
                continue

            tracked = self.queue.get(record.local_id)
            if tracked is None:
                if self.queue.offer(record):
                    added += 1
            elif tracked.fire_at != record.fire_at:
                self.queue.remove(record.local_id)
                self.queue.offer(record)
                updated += 1

        logger.info("Sync finished: %d remote, %d queued, %d rescheduled",
                    len(remote_items), added, updated)
        return True
