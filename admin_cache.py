# admin_cache.py
import logging

from errors import RemoteError, Unauthorized

logger = logging.getLogger("admin_cache")


class AdminPrivilegeCache:
    """Remembers whether the current user may use privileged deletion.

    Asks the remote service once. Anything other than a clear answer is
    cached as False. Only reset() (re-authentication) forgets the value.
    """

    def __init__(self, remote):
        self.remote = remote
        self._value = None  # None = not asked yet

    def is_admin(self):
        if self._value is not None:
            return self._value

        if self.remote is None:
            logger.warning("No remote service; privileged deletion disabled.")
            self._value = False
            return self._value

        try:
            status = self.remote.fetch_admin_status()
        except Unauthorized as e:
            logger.warning("Failed to fetch admin status, unauthorized: %s", e)
            status = None
        except RemoteError as e:
            logger.warning("Failed to fetch admin status: %s", e)
            status = None

        if status is None:
            logger.warning("Unable to verify administrative privileges; using standard deletion only.")
            self._value = False
        else:
            self._value = bool(status)
            logger.info("Admin status: %s", self._value)
        return self._value

    def pin(self, value=False):
        """Force the cached value, e.g. to False after the server rejected us."""
        if self._value != value:
            logger.info("Admin status pinned to %s", value)
        self._value = value

    def reset(self):
        logger.info("Admin status cache reset")
        self._value = None
