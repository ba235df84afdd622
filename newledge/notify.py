"""User-visible notices: logged, and shown as desktop notifications."""

import logging
import platform
import shutil
import subprocess

from newledge import config

log = logging.getLogger(__name__)

_TITLE = "Newledge"
_TIMEOUT = 10  # seconds


def notice(message: str) -> None:
    """Report a sync outcome to the user."""
    log.info(message)
    if config.NOTIFY:
        send(_TITLE, message)


def send(title: str, message: str) -> None:
    """Send a desktop notification. Silently no-ops where unsupported."""
    sender = _SENDERS.get(platform.system())
    if sender is None:
        log.debug("No desktop notifications on %s, skipping", platform.system())
        return
    try:
        sender(title, message)
    except Exception as e:
        log.debug("Failed to send notification: %s", e)


def _send_macos(title: str, message: str) -> None:
    if shutil.which("terminal-notifier"):
        _run(["terminal-notifier", "-title", title, "-message", message,
              "-group", "newledge"])
        return
    script = f'display notification "{_escape(message)}" with title "{_escape(title)}"'
    _run(["osascript", "-e", script])


def _send_linux(title: str, message: str) -> None:
    if not shutil.which("notify-send"):
        log.debug("notify-send not installed, skipping")
        return
    _run(["notify-send", "--app-name", "newledge", title, message])


def _run(cmd) -> None:
    subprocess.run(cmd, capture_output=True, timeout=_TIMEOUT)


def _escape(s: str) -> str:
    """Escape for AppleScript string."""
    return s.replace("\\", "\\\\").replace('"', '\\"')


_SENDERS = {
    "Darwin": _send_macos,
    "Linux": _send_linux,
}
