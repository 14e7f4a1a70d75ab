# main.py
"""
Command-line front end for the notification clock.

    python main.py            interactive shell, clock runs in the background
    python main.py --offline  same, without the remote service
    python main.py --check    one sync + due check, exit 1 if something is due
"""
import sys
import time
import logging
from concurrent.futures import TimeoutError as FutureTimeout

import config
from config import setup_logging
from local_store import LocalStore
from models import now_millis
from remote_service import init_supabase
from scheduler import NotificationScheduler

logger = logging.getLogger("main")

COMMAND_TIMEOUT = 30  # seconds to wait for the clock thread to run a command

HELP = """\
exit                      - stop the clock and quit
help                      - show this help
add notifications  (an)   - create a notification, optionally push it to the server
show notifications (sn)   - print remote notifications
pending                   - print notifications queued to fire next
delete notifications (dn) - remove notifications by remote id
admin                     - show whether privileged deletion is available
reauth                    - forget the cached admin status"""


def yes_no(answer):
    if answer is None:
        return False
    return answer.strip().lower() in ("y", "yes")


def connect_remote(offline=False):
    if offline:
        return None
    try:
        return init_supabase()
    except Exception as e:
        logger.warning("Supabase init failed at startup: %s", e)
        return None


def _wait(future, out):
    try:
        return future.result(timeout=COMMAND_TIMEOUT)
    except FutureTimeout:
        out("Clock is busy; command still pending.")
    except Exception as e:
        out(f"Command failed: {e}")
    return None


# -----------------------------
# COMMANDS
# -----------------------------
def handle_add(scheduler, ask=input, out=print):
    title = ask("Enter title: ").strip()
    if not title:
        out("Title required.")
        return None
    payload = ask("Enter payload: ").strip() or None
    try:
        delay = float(ask("Enter delay in seconds from now: ").strip())
    except ValueError:
        out("Delay must be a number.")
        return None
    upload = scheduler.online and yes_no(ask("Do you want to send to web? <yes/no> || <y/n> "))
    fire_at = now_millis() + int(delay * 1000)
    added = _wait(scheduler.add_notification(title, fire_at, payload=payload, upload=upload), out)
    if added is not None:
        out(f"Added {added.describe()}")
    return added


def handle_show(scheduler, out=print):
    if not scheduler.online:
        out("Offline: no remote service.")
        return []
    items = _wait(scheduler.list_remote(), out) or []
    if not items:
        out("No remote notifications.")
    for item in items:
        out(item.describe())
    return items


def handle_delete(scheduler, ask=input, out=print):
    line = ask("Enter remote notification ids to delete (comma separated): ")
    ids = []
    for token in (line or "").split(","):
        token = token.strip()
        if not token:
            continue
        try:
            ids.append(int(token))
        except ValueError:
            logger.warning("Skipping invalid notification id: %s", token)
    if not ids:
        out("No valid ids provided for deletion.")
        return False
    ok = _wait(scheduler.delete_notifications(ids), out)
    out(f"Deleted remote notifications {ids}." if ok
        else f"Failed to delete notifications {ids} on remote server (local copies removed).")
    return bool(ok)


def handle_pending(scheduler, out=print):
    items = _wait(scheduler.pending(), out) or []
    if not items:
        out("No queued notifications.")
    for item in items:
        out(item.describe())
    return items


def handle_admin(scheduler, out=print):
    is_admin = _wait(scheduler.admin_status(), out)
    out("Admin: yes" if is_admin else "Admin: no")
    return is_admin


def run_cli(scheduler, ask=input, out=print):
    out("Starting CLI mode. Type 'help' for commands.")
    scheduler.start()
    try:
        while True:
            try:
                command = ask("Enter command: ").strip().lower()
            except EOFError:
                break
            command = " ".join(command.split())
            if command == "exit":
                logger.info("Exiting...")
                break
            elif command == "help":
                out(HELP)
            elif command in ("add notifications", "add", "an"):
                handle_add(scheduler, ask, out)
            elif command in ("show notifications", "show", "sn"):
                handle_show(scheduler, out)
            elif command == "pending":
                handle_pending(scheduler, out)
            elif command in ("delete notifications", "delete", "dn"):
                handle_delete(scheduler, ask, out)
            elif command == "admin":
                handle_admin(scheduler, out)
            elif command == "reauth":
                _wait(scheduler.reset_admin(), out)
                out("Admin status will be checked again.")
            elif command:
                logger.warning("Unknown command: %s", command)
                out("Unknown command")
    finally:
        scheduler.stop()
        scheduler.join(timeout=config.POLL_INTERVAL + COMMAND_TIMEOUT)


def run_check_only(store, remote=None, out=print):
    """Non-interactive check used by scripts/cron. Returns True if anything is due."""
    scheduler = NotificationScheduler(store, remote=remote, deliver=lambda n: None)
    if scheduler.sync is not None:
        scheduler.sync.reconcile(store, force=True)
    now = now_millis()
    due = [n for n in store.find_earliest(scheduler.sample_size)
           if n.fire_at <= now + scheduler.delta_ms]
    if due:
        logger.info("Found %d due notifications", len(due))
        for n in due:
            out(n.describe())
    return bool(due)


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    setup_logging("main")
    remote = connect_remote(offline="--offline" in argv)
    if remote is None:
        logger.warning("Running offline: notifications fire locally only.")

    store = LocalStore(config.DB_PATH)

    if "check" in argv or "--check" in argv:
        sys.exit(1 if run_check_only(store, remote) else 0)

    scheduler = NotificationScheduler(store, remote=remote)
    try:
        run_cli(scheduler)
    except KeyboardInterrupt:
        scheduler.stop()
        time.sleep(config.POLL_INTERVAL)


if __name__ == "__main__":
    main()
