# due_queue.py
import heapq
import itertools
import logging

logger = logging.getLogger("due_queue")


class DueQueue:
    """Pending notifications ordered by fire time, at most one entry per local id.

    Ties on fire time keep insertion order. Not thread-safe: only the clock
    worker touches it.
    """

    def __init__(self):
        self._heap = []          # (fire_at, seq, local_id)
        self._entries = {}       # local_id -> (seq, notification)
        self._counter = itertools.count()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, local_id):
        return local_id in self._entries

    def get(self, local_id):
        entry = self._entries.get(local_id)
        return entry[1] if entry else None

    def offer(self, notification):
        """Track a notification unless its local id is already tracked."""
        if notification.local_id is None:
            raise ValueError("Only persisted notifications can be queued.")
        if notification.local_id in self._entries:
            logger.debug("Duplicate suppressed for notification %s", notification.local_id)
            return False
        seq = next(self._counter)
        self._entries[notification.local_id] = (seq, notification)
        heapq.heappush(self._heap, (notification.fire_at, seq, notification.local_id))
        return True

    def remove(self, local_id):
        """Forget a tracked notification. No-op when it is not tracked."""
        if self._entries.pop(local_id, None) is None:
            return False
        # Stale heap entries are skipped lazily by _prune.
        return True

    def _prune(self):
        while self._heap:
            fire_at, seq, local_id = self._heap[0]
            entry = self._entries.get(local_id)
            if entry is not None and entry[0] == seq:
                return
            heapq.heappop(self._heap)

    def peek(self):
        """Earliest tracked notification, or None."""
        self._prune()
        if not self._heap:
            return None
        return self._entries[self._heap[0][2]][1]

    def peek_due(self, now, delta=0):
        first = self.peek()
        return first is not None and first.fire_at <= now + delta

    def drain_due(self, now, delta=0):
        """Remove and return every notification due at now + delta, earliest first."""
        due = []
        while self.peek_due(now, delta):
            _, _, local_id = heapq.heappop(self._heap)
            due.append(self._entries.pop(local_id)[1])
        return due

    def snapshot(self):
        """Tracked notifications in firing order, without removing them."""
        ordered = sorted(self._entries.values(), key=lambda e: (e[1].fire_at, e[0]))
        return [notification for _, notification in ordered]
