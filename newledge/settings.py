"""Persistent settings for the sync client.

Holds the account binding (token, user, session id), the target directory
names, the sync schedule and the run flags. Settings are stored as JSON and
written atomically to prevent corruption if the process is interrupted
mid-write.

Several processes may share the file (a --watch process plus one-off
commands), so an instance only ever writes back the keys it changed, and
long-lived instances call reload() before acting on what they hold.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Tuple

from newledge import config

log = logging.getLogger(__name__)

SETTINGS_PATH = config.CONFIG_DIR / "settings.json"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "token": None,
    "user": None,
    "session_id": None,
    # True while a sync run is in progress, owned by sync_pid
    "syncing": False,
    "sync_pid": None,
    # Target directories, relative to the vault root
    "root_dir": "Newledge",
    "rich_text_dir": "Notes",
    "link_dir": "Articles",
    # Minutes between scheduled syncs
    "sync_interval": 60,
    "last_sync_time": None,
    "enable": True,
}

SYNC_INTERVALS = {
    60: "1 hour",
    720: "12 hours",
    1440: "24 hours",
}

_DIR_KEYS = ("root_dir", "rich_text_dir", "link_dir")

# Describes the running process; never taken over from another process
_PROCESS_KEYS = ("enable",)


def _load_raw() -> Dict[str, Any]:
    data = dict(DEFAULT_SETTINGS)
    if SETTINGS_PATH.exists():
        data.update(json.loads(SETTINGS_PATH.read_text()))
    return data


def _save_raw(data: Dict[str, Any]) -> None:
    """Write settings atomically: write to temp file, then rename."""
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=SETTINGS_PATH.parent, prefix=".settings_", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp, SETTINGS_PATH)
    except BaseException:
        os.unlink(tmp)
        raise


def _pid_alive(pid) -> bool:
    try:
        os.kill(int(pid), 0)  # signal 0: check existence only
    except PermissionError:
        return True
    except (ValueError, TypeError, OSError):
        return False
    return True


def clean_dir(value: str) -> str:
    """Trim a directory setting, unify separators, strip outer slashes."""
    return value.strip().replace("\\", "/").strip("/")


class Settings:
    """Interface for reading and writing persistent settings."""

    def __init__(self) -> None:
        self._data = _load_raw()
        self._dirty: Set[str] = set()

    def _set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._dirty.add(key)

    def _absorb(self, data: Dict[str, Any]) -> None:
        for key in _PROCESS_KEYS:
            data[key] = self._data[key]
        self._data = data

    def reload(self) -> None:
        """Pick up changes saved by other processes. Unsaved local changes win."""
        data = _load_raw()
        data.update({key: self._data[key] for key in self._dirty})
        self._absorb(data)

    def save(self) -> None:
        """Write the keys changed here, keeping everything else as it is on disk."""
        data = _load_raw()
        data.update({key: self._data[key] for key in self._dirty})
        _save_raw(data)
        self._dirty.clear()
        self._absorb(data)

    # -- Account --

    @property
    def token(self) -> Optional[str]:
        return self._data["token"]

    @token.setter
    def token(self, token: Optional[str]) -> None:
        self._set("token", token)

    @property
    def user(self) -> Optional[Dict[str, str]]:
        return self._data["user"]

    @user.setter
    def user(self, user: Optional[Dict[str, str]]) -> None:
        self._set("user", user)

    @property
    def session_id(self) -> Optional[str]:
        return self._data["session_id"]

    @session_id.setter
    def session_id(self, session_id: Optional[str]) -> None:
        self._set("session_id", session_id)

    def clear_account(self) -> None:
        """Forget the binding so the next run requires a fresh login."""
        self._set("token", None)
        self._set("user", None)
        self._set("session_id", None)

    # -- Run flags --

    @property
    def syncing(self) -> bool:
        return bool(self._data["syncing"])

    @syncing.setter
    def syncing(self, value: bool) -> None:
        self._set("syncing", value)
        self._set("sync_pid", os.getpid() if value else None)

    @property
    def syncing_elsewhere(self) -> bool:
        """True while another live process holds the in-progress flag."""
        pid = self._data["sync_pid"]
        if not self.syncing or pid is None or pid == os.getpid():
            return False
        return _pid_alive(pid)

    @property
    def enable(self) -> bool:
        return bool(self._data["enable"])

    @enable.setter
    def enable(self, value: bool) -> None:
        self._set("enable", value)

    # -- Directories --

    @property
    def root_dir(self) -> str:
        return self._data["root_dir"]

    @property
    def link_dir(self) -> str:
        return self._data["link_dir"]

    @property
    def rich_text_dir(self) -> str:
        return self._data["rich_text_dir"]

    def set_dir(self, key: str, value: str) -> Tuple[str, bool]:
        """Store a cleaned directory setting.

        An empty value falls back to the default. Returns the stored value
        and whether the fallback was used.
        """
        if key not in _DIR_KEYS:
            raise KeyError(key)
        cleaned = clean_dir(value)
        if not cleaned:
            self._set(key, DEFAULT_SETTINGS[key])
            return self._data[key], True
        self._set(key, cleaned)
        return cleaned, False

    # -- Schedule --

    @property
    def sync_interval(self) -> int:
        return int(self._data["sync_interval"])

    @sync_interval.setter
    def sync_interval(self, minutes: int) -> None:
        if minutes not in SYNC_INTERVALS:
            raise ValueError(
                f"Sync interval must be one of {sorted(SYNC_INTERVALS)} minutes, got {minutes}"
            )
        self._set("sync_interval", minutes)

    @property
    def last_sync_time(self) -> Optional[datetime]:
        value = self._data["last_sync_time"]
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except (ValueError, TypeError):
            log.warning("Ignoring malformed last_sync_time: %r", value)
            return None

    def touch_last_sync_time(self, now: Optional[datetime] = None) -> None:
        self._set("last_sync_time", (now or datetime.now(timezone.utc)).isoformat())
