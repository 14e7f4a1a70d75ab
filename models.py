# models.py
import math
import time
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from errors import NotificationError

logger = logging.getLogger("models")

# Anything below this is an epoch in seconds (10^11 ms is March 1973).
SECONDS_CUTOFF = 10 ** 11
# 9999-12-31T23:59:59.999Z, the last instant datetime can represent.
MAX_MILLIS = 253_402_300_799_999


# -----------------------------
# TIME
# -----------------------------
def now_millis() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def to_millis(value) -> int:
    """Normalize a second/millisecond epoch, numeric string or datetime to epoch ms."""
    if isinstance(value, bool):
        raise NotificationError(f"Invalid fire time: {value!r}")
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, str):
        text = value.strip()
        try:
            value = float(text)
        except ValueError:
            try:
                return to_millis(datetime.fromisoformat(text))
            except ValueError:
                raise NotificationError(f"Unparseable fire time: {text!r}")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise NotificationError(f"Invalid fire time: {value!r}")
        try:
            millis = int(value * 1000) if abs(value) < SECONDS_CUTOFF else int(value)
        except OverflowError:
            millis = None
        if millis is None or abs(millis) > MAX_MILLIS:
            raise NotificationError(f"Fire time out of range: {value!r}")
        return millis
    raise NotificationError(f"Invalid fire time: {value!r}")


# -----------------------------
# NOTIFICATION
# -----------------------------
@dataclass
class Notification:
    title: str
    fire_at: int
    payload: Optional[str] = None
    local_id: Optional[int] = None
    remote_id: Optional[int] = None

    def __post_init__(self):
        if not self.title or not str(self.title).strip():
            raise NotificationError("Notification title must not be empty.")
        self.fire_at = to_millis(self.fire_at)

    @classmethod
    def from_row(cls, row, remote=False):
        """Build a notification from a db row or a remote JSON object.

        Remote rows carry their own id as ``id``; local rows keep the remote
        one in ``remote_id``.
        """
        fire_at = row.get("fire_at")
        if fire_at is None:
            fire_at = row.get("fireAt")
        if remote:
            return cls(title=row.get("title"), fire_at=fire_at,
                       payload=row.get("payload"), remote_id=row.get("id"))
        return cls(title=row.get("title"), fire_at=fire_at, payload=row.get("payload"),
                   local_id=row.get("id"), remote_id=row.get("remote_id"))

    def with_ids(self, local_id=None, remote_id=None):
        return replace(
            self,
            local_id=self.local_id if local_id is None else local_id,
            remote_id=self.remote_id if remote_id is None else remote_id,
        )

    def describe(self):
        when = datetime.fromtimestamp(self.fire_at / 1000).strftime("%Y-%m-%d %H:%M:%S")
        parts = [f"#{self.local_id}" if self.local_id is not None else "#-"]
        if self.remote_id is not None:
            parts.append(f"(web {self.remote_id})")
        parts.append(f"{self.title!r} at {when}")
        if self.payload:
            parts.append(f"- {self.payload}")
        return " ".join(parts)
