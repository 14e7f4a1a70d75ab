# errors.py
"""Failure taxonomy shared by the store, the remote service and the clock."""


class RemoteError(Exception):
    """Base class for anything that went wrong talking to the remote service."""


class RemoteUnavailable(RemoteError):
    """Network error, timeout, server error or a client that was never configured."""


class Unauthorized(RemoteError):
    """The remote service rejected our credentials."""


class LocalStoreError(Exception):
    """Persistence failure in the local database."""


class NotificationError(ValueError):
    """Invalid notification data (empty title, bad fire time)."""
