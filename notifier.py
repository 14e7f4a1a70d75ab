# notifier.py
import os
import logging
from plyer import notification as native
from config import APP_NAME, ICON_PATH, NOTIFY_TIMEOUT

logger = logging.getLogger("notifier")


def format_message(item):
    return item.payload or "Reminder due now."


def send_native_notification(title, message):
    try:
        native.notify(
            title=title,
            message=message,
            app_name=APP_NAME,
            app_icon=ICON_PATH if os.path.exists(ICON_PATH) else None,
            timeout=NOTIFY_TIMEOUT
        )
        return True
    except Exception:
        logger.exception("Notification failed.")
        return False


def deliver(item):
    """Show a due notification; falls back to the console when no native backend works."""
    if send_native_notification(item.title, format_message(item)):
        return True
    print(f"Notifying: {item.describe()}")
    return False
