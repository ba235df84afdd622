"""Sync orchestration: walk the pending task queue and write each note.

Only one run at a time: the persisted `syncing` flag is checked and set
before any remote call, and cleared when the run ends, however it ends.
Tasks are processed one by one with a fixed pause after each, so a large
backlog never turns into a burst against the service.
"""

import logging
import signal
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from newledge import account
from newledge import api
from newledge import materializer
from newledge import notify
from newledge.vault import FolderResult, join, normalize_path

log = logging.getLogger(__name__)

ITEM_DELAY = 3  # seconds, after every task
EMPTY_RUN_DELAY = 1
TICK_SECONDS = 60


# -- Process lifecycle --


def startup(settings) -> None:
    """Reset run flags left behind by a process that did not exit cleanly."""
    settings.reload()
    if settings.syncing and not settings.syncing_elsewhere:
        log.warning("Clearing in-progress flag left by an interrupted run")
        settings.syncing = False
    settings.enable = True
    settings.save()


def shutdown(settings) -> None:
    settings.reload()
    # A run owned by another live process keeps its flag
    if settings.syncing and not settings.syncing_elsewhere:
        settings.syncing = False
    settings.enable = False
    settings.save()


def init_dirs(settings, vault) -> None:
    """Create the root, link and rich-text folders if they are missing."""
    root = normalize_path(settings.root_dir)
    for folder in (
        root,
        join(root, settings.link_dir),
        join(root, settings.rich_text_dir),
    ):
        if vault.ensure_folder(folder) is FolderResult.ERROR:
            log.warning("Could not prepare folder %s", folder)


# -- Sync run --


def sync(settings, vault, message: bool = True) -> Dict[str, Any]:
    """Run one sync pass over the pending task queue.

    Returns a summary {"status", "count", "success", "failed"} where status
    is "skipped" (not logged in or already running), "completed",
    "aborted" (disabled or unbound mid-run) or "failed".
    """
    summary: Dict[str, Any] = {"status": "skipped", "count": 0, "success": 0, "failed": 0}

    settings.reload()
    token = settings.token
    if not token:
        log.debug("Not logged in, skipping sync")
        return summary
    if settings.syncing:
        log.info("A sync is already in progress, skipping")
        return summary

    settings.syncing = True
    settings.save()

    try:
        init_dirs(settings, vault)
        if message:
            notify.notice("Sync started")

        summary["status"] = _pull_tasks(settings, vault, token, summary)
        _report(summary)
    except Exception:
        log.exception("Sync failed")
        notify.notice("Sync failed, please try again later")
        summary["status"] = "failed"
    finally:
        settings.touch_last_sync_time()
        settings.syncing = False
        settings.save()

    return summary


def _pull_tasks(settings, vault, token: str, summary: Dict[str, Any]) -> str:
    has_more = True
    while has_more:
        if not settings.enable:
            notify.notice("Sync disabled, stopping")
            return "aborted"

        try:
            page = api.list_pending_tasks(token)
        except api.AuthError:
            notify.notice("Account unbound, stopping sync")
            settings.clear_account()
            return "aborted"

        if not page["valid"]:
            notify.notice("Account unbound, stopping sync")
            return "aborted"

        tasks = page["result"]
        if not tasks:
            break

        for task in tasks:
            summary["count"] += 1
            try:
                result = materializer.sync_note(task["id"], token, settings, vault)
                if not result["plugin_enable"]:
                    log.info("Sync disabled while processing task %s", task["id"])
                    return "aborted"
                if not result["task_exist"]:
                    # The listing is stale; don't walk the rest of it
                    return "completed"
                if not result["sync_success"]:
                    return "completed"
                summary["success"] += 1
            except Exception:
                summary["failed"] += 1
                log.exception("Failed to sync task %s", task["id"])
            finally:
                time.sleep(ITEM_DELAY)

        has_more = page["page_size"] == page["limit"]

    return "completed"


def _report(summary: Dict[str, Any]) -> None:
    if summary["count"] == 0:
        time.sleep(EMPTY_RUN_DELAY)
        notify.notice("Nothing new to sync")
        return

    message = f"Sync complete: {summary['success']} item(s) synced"
    if summary["failed"]:
        message += f", {summary['failed']} failed, please retry"
    notify.notice(message)


# -- Scheduling --


def timing_sync(settings, vault, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """Sync if the configured interval has passed since the last run."""
    try:
        settings.reload()
        if settings.syncing:
            return None

        now = now or datetime.now(timezone.utc)
        last = settings.last_sync_time
        if last is None:
            elapsed = 0.0
        else:
            if last.tzinfo is None:
                last = last.replace(tzinfo=timezone.utc)
            elapsed = (now - last).total_seconds()

        if elapsed >= settings.sync_interval * 60:
            return sync(settings, vault)
    except Exception:
        log.exception("Scheduled sync check failed")
    return None


class Ticker:
    """Call a function every `interval` seconds until cancelled.

    Ticks follow a fixed schedule: a slow callback does not push later
    ticks back, and ticks missed while it ran are skipped.
    """

    def __init__(self, interval: float, callback: Callable[[], Any]) -> None:
        self.interval = interval
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def run(self) -> None:
        next_tick = time.monotonic() + self.interval
        while not self._cancelled:
            remaining = next_tick - time.monotonic()
            if remaining > 0:
                # Short naps so a cancel from a signal handler is seen quickly
                time.sleep(min(remaining, 1.0))
                continue

            self.callback()

            now = time.monotonic()
            while next_tick <= now:
                next_tick += self.interval


def run_once(settings, vault) -> Dict[str, Any]:
    """One-shot run: validate the account, sync, and tidy up the flags."""
    startup(settings)
    try:
        if not account.check_account(settings)["valid"]:
            log.warning("Not logged in. Run 'newledge --login' first.")
            return {"status": "skipped", "count": 0, "success": 0, "failed": 0}
        init_dirs(settings, vault)
        return sync(settings, vault)
    finally:
        shutdown(settings)


def watch(settings, vault) -> None:
    """Long-running mode: sync now, then on schedule until stopped."""
    startup(settings)
    ticker = Ticker(TICK_SECONDS, lambda: timing_sync(settings, vault))

    def _stop(signum, frame):
        log.info("Received signal %d, stopping", signum)
        settings.enable = False
        ticker.cancel()

    previous = {sig: signal.signal(sig, _stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        if not account.check_account(settings)["valid"]:
            log.warning("Not logged in. Run 'newledge --login' first.")
            return
        init_dirs(settings, vault)
        sync(settings, vault)
        log.info("Watching for new notes every %d minute(s)", settings.sync_interval)
        ticker.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        shutdown(settings)
