"""Local note store (Obsidian vault or plain folder).

Paths handed to the Vault are vault-relative and use forward slashes, the
way Obsidian names files. Titles coming from the service are sanitized
before they become path segments, and new notes never overwrite existing
files: a numeric suffix is appended instead.
"""

import enum
import logging
import re
import unicodedata
from pathlib import Path

log = logging.getLogger(__name__)

PLACEHOLDER_TITLE = "Untitled"
MAX_TITLE_LENGTH = 100

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")


class FolderResult(enum.Enum):
    CREATED = "created"
    EXISTS = "exists"
    ERROR = "error"


def normalize_path(path: str) -> str:
    """Normalize a vault-relative path.

    Unifies separators, drops empty and "." segments, resolves ".." without
    climbing above the vault root, and applies Unicode NFC. The vault root
    itself normalizes to "/".
    """
    path = path.replace("\u00a0", " ").replace("\u202f", " ")
    parts = []
    for segment in path.replace("\\", "/").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    normalized = unicodedata.normalize("NFC", "/".join(parts))
    return normalized or "/"


def join(*parts: str) -> str:
    return normalize_path("/".join(parts))


def sanitize_title(title) -> str:
    """Turn a note title into a single safe path segment."""
    sanitized = _CONTROL_CHARS.sub("", title or "")
    sanitized = _ILLEGAL_CHARS.sub("_", sanitized)
    sanitized = _WHITESPACE.sub(" ", sanitized).strip()
    sanitized = sanitized[:MAX_TITLE_LENGTH].rstrip()

    if not sanitized:
        return PLACEHOLDER_TITLE

    normalized = normalize_path(sanitized)
    if normalized == "/":
        return PLACEHOLDER_TITLE
    return normalized


class Vault:
    """Folder-backed note store rooted at a directory on disk."""

    def __init__(self, root) -> None:
        self.root = Path(root)

    def _abs(self, path: str) -> Path:
        normalized = normalize_path(path)
        if normalized == "/":
            return self.root
        return self.root / normalized

    def ensure_folder(self, path: str) -> FolderResult:
        """Create a folder (and its parents). Existing folders are fine."""
        target = self._abs(path)
        try:
            target.mkdir(parents=True)
        except FileExistsError:
            if target.is_dir():
                return FolderResult.EXISTS
            log.warning("Cannot create folder %s: a file is in the way", path)
            return FolderResult.ERROR
        except OSError as e:
            log.warning("Cannot create folder %s: %s", path, e)
            return FolderResult.ERROR
        log.info("Created folder: %s", path)
        return FolderResult.CREATED

    def exists(self, path: str) -> bool:
        return self._abs(path).exists()

    def write(self, path: str, text: str) -> Path:
        target = self._abs(path)
        target.write_text(text, encoding="utf-8")
        log.info("Created note: %s", path)
        return target

    def unique_note_path(self, base: str) -> str:
        """Return base + ".md", or base + " N.md" for the first unused N."""
        name = f"{base}.md"
        i = 0
        while self.exists(name):
            i += 1
            name = f"{base} {i}.md"
        return name
