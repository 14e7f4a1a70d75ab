# config.py
import os
import sys
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("config")


def _env_float(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid value for %s: %r, using %s", name, raw, default)
        return default


def _env_int(name, default):
    return int(_env_float(name, default))


APP_NAME = "Reminder Clock"
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ICON_PATH = os.path.join(BASE_DIR, "icon.ico")
LOG_FILE = os.getenv("REMINDER_LOG_FILE", os.path.join(BASE_DIR, "reminder_log.txt"))
DB_PATH = os.getenv("REMINDER_DB_PATH", os.path.join(BASE_DIR, "reminders.db"))

# Remote service (Supabase)
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")
REMINDER_OWNER = os.getenv("REMINDER_OWNER", "")
NOTIFICATIONS_TABLE = os.getenv("NOTIFICATIONS_TABLE", "notifications")
USERS_TABLE = os.getenv("USERS_TABLE", "users")
REMOTE_TIMEOUT = _env_float("REMOTE_TIMEOUT", 10.0)

# Clock tuning
POLL_INTERVAL = _env_float("POLL_INTERVAL", 0.5)     # seconds between iterations
DUE_DELTA_MS = _env_int("DUE_DELTA_MS", 1000)        # fire up to this early
SAMPLE_SIZE = _env_int("SAMPLE_SIZE", 10)            # rows pulled from the db per tick
LOW_WATERMARK = _env_int("LOW_WATERMARK", 3)         # sync eagerly below this queue size
SYNC_INTERVAL = _env_float("SYNC_INTERVAL", 30.0)    # seconds between regular syncs
NOTIFY_TIMEOUT = _env_int("NOTIFY_TIMEOUT", 10)


def setup_logging(name="reminder"):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_FILE, encoding="utf-8"),
            logging.StreamHandler(sys.stdout)
        ]
    )
    return logging.getLogger(name)
