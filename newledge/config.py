"""Process configuration, read from the environment and a dotenv file.

Looked up in order: NEWLEDGE_CONFIG_DIR, $XDG_CONFIG_HOME/newledge,
~/.config/newledge. A .env in the working directory is used when the
config directory has none (handy for dev installs).
"""

import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv


def _config_dir() -> Path:
    override = os.environ.get("NEWLEDGE_CONFIG_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME", "").strip() or Path.home() / ".config"
    return Path(base) / "newledge"


CONFIG_DIR = _config_dir()
CONFIG_DIR.mkdir(parents=True, exist_ok=True)

ENV_PATH = CONFIG_DIR / ".env"
if not ENV_PATH.exists() and (Path.cwd() / ".env").exists():
    ENV_PATH = Path.cwd() / ".env"

load_dotenv(ENV_PATH)


def _env_flag(var: str, default: bool) -> bool:
    raw = os.environ.get(var, "").strip().lower()
    if not raw:
        return default
    return raw in ("true", "1", "yes", "on")


# Set by ensure_loaded(); one-off commands like --status never need it
VAULT_PATH: str = ""

API_URL: str = os.environ.get("NEWLEDGE_API_URL", "https://api.newledge.cn/obsidian").strip().rstrip("/")
NOTIFY: bool = _env_flag("NEWLEDGE_NOTIFY", True)
HTTP_TIMEOUT: int = int(os.environ.get("HTTP_TIMEOUT", "30"))
LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").strip().upper()

_loaded = False


def ensure_loaded() -> None:
    """Resolve the vault location. Exits with a hint when it is not set."""
    global _loaded, VAULT_PATH
    if _loaded:
        return
    value = os.environ.get("NEWLEDGE_VAULT_PATH", "").strip()
    if not value or value.startswith("your_"):
        print(f"Error: NEWLEDGE_VAULT_PATH is not set. Add it to {ENV_PATH}")
        sys.exit(1)
    VAULT_PATH = value
    _loaded = True
    _validate_optional()


def _validate_optional() -> None:
    """Warn about settings that look wrong but don't stop a run."""
    log = logging.getLogger(__name__)
    if VAULT_PATH and not Path(VAULT_PATH).expanduser().is_dir():
        log.warning("NEWLEDGE_VAULT_PATH does not exist: %s", VAULT_PATH)
    if not API_URL.startswith("https://"):
        log.warning("NEWLEDGE_API_URL is not an https URL: %s", API_URL)


def setup_logging() -> None:
    """Configure logging for the CLI. Call once at each entry point."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
