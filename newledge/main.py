"""Newledge sync entry point.

By default a one-shot run: pulls queued notes into the vault, then exits.
Suitable for cron or launchd; use --watch for a long-running process.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import requests

log = logging.getLogger("newledge")

_VERSION = "0.1.0"

_HELP = """\
Usage: newledge <command>

  newledge --sync        Pull queued notes into the vault (default)
  newledge --login       Bind your Newledge account by scanning a QR code
  newledge --logout      Unbind this device from your account
  newledge --status      Show account, schedule and folders
  newledge --retry       Re-queue failed notes and sync again
  newledge --watch       Keep running and sync on schedule

Settings:
  --interval MINUTES     Sync every 60, 720 or 1440 minutes
  --root-dir NAME        Folder for synced notes, relative to the vault
  --link-dir NAME        Subfolder for articles and links
  --rich-text-dir NAME   Subfolder for notes

Options:
  -h, --help             Show this help
  -V, --version          Show version
"""

_DIR_FLAGS = {
    "--root-dir": "root_dir",
    "--link-dir": "link_dir",
    "--rich-text-dir": "rich_text_dir",
}


def _open_vault():
    from newledge import config
    from newledge.vault import Vault

    config.ensure_loaded()
    return Vault(Path(config.VAULT_PATH).expanduser())


def _flag_value(flag: str) -> str:
    idx = sys.argv.index(flag)
    if idx + 1 >= len(sys.argv):
        print(f"Error: {flag} needs a value")
        sys.exit(2)
    return sys.argv[idx + 1]


def _ago(then: datetime) -> str:
    delta = datetime.now(timezone.utc) - then
    seconds = delta.total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        mins = int(seconds / 60)
        return f"{mins} min{'s' if mins != 1 else ''} ago"
    if seconds < 86400:
        hours = int(seconds / 3600)
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = delta.days
    return f"{days} day{'s' if days != 1 else ''} ago"


def _status() -> None:
    """Print a quick status overview to the terminal."""
    from newledge import account
    from newledge.settings import SYNC_INTERVALS, Settings

    settings = Settings()
    checked = account.check_account(settings)

    print()
    print("  Newledge")
    print("  " + "─" * 40)

    if checked["valid"]:
        print(f"  Account:   {settings.user['name']}")
        if checked["failed_task_count"]:
            print(
                f"  Failed:    {checked['failed_task_count']} item(s),"
                " run 'newledge --retry'"
            )
    else:
        print("  Account:   not logged in (run 'newledge --login')")

    last = settings.last_sync_time
    if last is not None:
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        print(f"  Last sync: {_ago(last)}")
    else:
        print("  Last sync: never")

    interval = SYNC_INTERVALS.get(settings.sync_interval, f"{settings.sync_interval} min")
    print(f"  Schedule:  every {interval}")
    print(f"  Folders:   {settings.root_dir}/{settings.link_dir}, "
          f"{settings.root_dir}/{settings.rich_text_dir}")
    print()


def _update_settings() -> bool:
    """Apply --interval / --*-dir flags. Returns True if any were given."""
    from newledge import notify
    from newledge.settings import SYNC_INTERVALS, Settings

    settings = Settings()
    changed = False

    if "--interval" in sys.argv:
        raw = _flag_value("--interval")
        try:
            settings.sync_interval = int(raw)
        except ValueError:
            print(f"Error: interval must be one of {', '.join(str(m) for m in SYNC_INTERVALS)}")
            sys.exit(2)
        print(f"Sync interval set to {SYNC_INTERVALS[settings.sync_interval]}")
        changed = True

    for flag, key in _DIR_FLAGS.items():
        if flag not in sys.argv:
            continue
        value, reset = settings.set_dir(key, _flag_value(flag))
        if reset:
            notify.notice("Directory cannot be empty, reset to default")
        print(f"{key} set to '{value}'")
        changed = True

    if changed:
        settings.save()
    return changed


def _logout() -> None:
    from newledge import api
    from newledge.settings import Settings

    settings = Settings()
    if not settings.token:
        print("Not logged in.")
        return

    try:
        api.unbind(settings.token)
    except (requests.RequestException, api.ApiError):
        log.warning("Unbind request failed", exc_info=True)
        print("Could not reach Newledge, please try again later.")
        return

    settings.clear_account()
    settings.save()
    print("Logged out.")


def _retry() -> None:
    from newledge import api
    from newledge import sync
    from newledge.settings import Settings

    vault = _open_vault()
    settings = Settings()
    if not settings.token:
        print("Not logged in. Run 'newledge --login' first.")
        return

    try:
        api.retry_failed(settings.token)
    except (requests.RequestException, api.ApiError):
        log.warning("Retry request failed", exc_info=True)
        print("Could not reach Newledge, please try again later.")
        return

    if settings.syncing:
        print("A sync is in progress; failed notes will be picked up by the next one.")
        return
    sync.run_once(settings, vault)


def main():
    if "--help" in sys.argv or "-h" in sys.argv:
        print(_HELP)
        return

    if "--version" in sys.argv or "-V" in sys.argv:
        print(f"newledge {_VERSION}")
        return

    from newledge import config
    config.setup_logging()

    try:
        if _update_settings():
            return

        if "--status" in sys.argv:
            _status()
            return

        if "--logout" in sys.argv:
            _logout()
            return

        if "--retry" in sys.argv:
            _retry()
            return

        from newledge import sync
        from newledge.settings import Settings

        vault = _open_vault()
        settings = Settings()

        if "--login" in sys.argv:
            from newledge.login import login_interactive

            sync.startup(settings)
            try:
                login_interactive(settings, vault)
            finally:
                sync.shutdown(settings)
            return

        if "--watch" in sys.argv:
            sync.watch(settings, vault)
            return

        sync.run_once(settings, vault)

    except requests.exceptions.ConnectionError:
        print(
            "\n  Could not connect to Newledge."
            "\n  Check your network connection and try again.\n"
        )
        return
    except KeyboardInterrupt:
        print()
        return
    except Exception:
        log.exception("Unexpected error")
        raise


if __name__ == "__main__":
    main()
