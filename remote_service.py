# remote_service.py
import logging

import httpx
from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client

import config
from errors import RemoteUnavailable, Unauthorized
from models import Notification

logger = logging.getLogger("remote_service")

# PostgREST/Supabase codes that mean "your credentials are not good enough".
UNAUTHORIZED_CODES = {"401", "403", "42501", "PGRST301", "PGRST302"}


# -----------------------------
# INIT & CONNECTION
# -----------------------------
def _create(key) -> Client:
    options = ClientOptions(postgrest_client_timeout=config.REMOTE_TIMEOUT)
    return create_client(config.SUPABASE_URL, key, options=options)


def init_supabase(owner=None):
    """Build the remote service from the environment (.env)."""
    if not config.SUPABASE_URL or not config.SUPABASE_KEY:
        raise RuntimeError("Supabase credentials missing in environment (.env).")
    owner = owner or config.REMINDER_OWNER
    if not owner:
        raise RuntimeError("REMINDER_OWNER is not set.")
    try:
        client = _create(config.SUPABASE_KEY)
        admin_client = _create(config.SUPABASE_SERVICE_KEY) if config.SUPABASE_SERVICE_KEY else None
    except Exception as e:
        logger.exception("Failed to initialize Supabase client.")
        raise RuntimeError(f"Failed to initialize Supabase client: {e}")
    return SupabaseRemote(owner, client=client, admin_client=admin_client)


def _translate(exc, action):
    """Map a library exception onto our remote failure types."""
    if isinstance(exc, APIError):
        code = str(exc.code or "")
        if code in UNAUTHORIZED_CODES:
            return Unauthorized(f"{action}: {exc.message or code}")
        return RemoteUnavailable(f"{action}: {exc.message or code}")
    if isinstance(exc, httpx.TimeoutException):
        return RemoteUnavailable(f"{action}: timed out")
    return RemoteUnavailable(f"{action}: {exc}")


class SupabaseRemote:
    """Notifications table of one owner in Supabase.

    The owner client is subject to row-level security. The optional admin
    client uses the service-role key and backs privileged deletion.
    """

    def __init__(self, owner, client=None, admin_client=None,
                 table=None, users_table=None):
        self.owner = owner
        self.client = client
        self.admin_client = admin_client
        self.table = table or config.NOTIFICATIONS_TABLE
        self.users_table = users_table or config.USERS_TABLE

    @property
    def is_configured(self):
        return self.client is not None

    def _execute(self, action, build):
        if self.client is None:
            raise RemoteUnavailable(f"{action}: remote service is not configured")
        try:
            return build().execute()
        except (APIError, httpx.HTTPError, OSError) as e:
            raise _translate(e, action) from e

    # -----------------------------
    # NOTIFICATIONS
    # -----------------------------
    def fetch_all(self):
        """Return every remote notification of the owner."""
        resp = self._execute(
            "fetch notifications",
            lambda: self.client.table(self.table).select("*").eq("owner", self.owner),
        )
        notifications = []
        for row in resp.data or []:
            try:
                notifications.append(Notification.from_row(row, remote=True))
            except ValueError:
                logger.warning("Skipping malformed remote notification: %s", row)
        return notifications

    def upload(self, notification):
        """Send one notification to the remote service. Returns its remote id."""
        data = {
            "owner": self.owner,
            "title": notification.title,
            "payload": notification.payload,
            "fire_at": notification.fire_at,
        }
        resp = self._execute(
            "upload notification",
            lambda: self.client.table(self.table).insert(data),
        )
        rows = resp.data or []
        if not rows or rows[0].get("id") is None:
            logger.warning("Uploaded notification but server returned no id.")
            return None
        remote_id = rows[0]["id"]
        logger.info("Uploaded notification successfully with remote id=%s", remote_id)
        return remote_id

    def delete(self, ids, privileged=False):
        """Delete notifications by remote id. True if every id was removed."""
        ids = sorted(set(ids))
        if not ids:
            logger.warning("No notification ids provided for deletion")
            return False

        if privileged:
            if self.admin_client is None:
                logger.warning("Privileged deletion requested but no service key is configured.")
                return False
            resp = self._execute(
                "privileged delete",
                lambda: self.admin_client.table(self.table).delete().in_("id", ids),
            )
        else:
            resp = self._execute(
                "delete",
                lambda: self.client.table(self.table).delete()
                .eq("owner", self.owner).in_("id", ids),
            )

        deleted = {row.get("id") for row in resp.data or []}
        missing = [i for i in ids if i not in deleted]
        if missing:
            logger.warning("Failed to delete notifications %s (privileged=%s)", missing, privileged)
            return False
        logger.info("Deleted remote notifications %s (privileged=%s)", ids, privileged)
        return True

    # -----------------------------
    # USERS
    # -----------------------------
    def fetch_admin_status(self):
        """True/False from the users table, None when it cannot be determined."""
        resp = self._execute(
            "fetch admin status",
            lambda: self.client.table(self.users_table).select("is_admin")
            .eq("username", self.owner).limit(1),
        )
        rows = resp.data or []
        if not rows:
            logger.warning("No user row for %s; admin status unknown.", self.owner)
            return None
        flag = rows[0].get("is_admin")
        if isinstance(flag, bool):
            return flag
        if flag in (0, 1):
            return bool(flag)
        logger.warning("Failed to parse admin status from response: %s", rows[0])
        return None
