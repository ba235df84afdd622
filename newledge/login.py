"""Device-pairing login.

Flow:
  1. We ask the service for a short-lived session id
  2. The session id is shown as a QR code in the terminal
  3. User scans it in the Newledge app (Profile > Integrations > Obsidian)
  4. We poll until the app approves the session, then save the token
"""

import logging
import sys
import time
from typing import Any, Dict, Optional

import qrcode
import requests

from newledge import api
from newledge import sync as sync_mod

log = logging.getLogger(__name__)

IDLE = "idle"
POLLING = "polling"
RESOLVED = "resolved"

POLL_INTERVAL = 2  # seconds
MAX_ATTEMPTS = 60  # ~2 minutes, roughly the session lifetime

DEFAULT_USER_NAME = "Newledge user"


def _expired_status() -> Dict[str, Any]:
    return {
        "status": False,
        "token": None,
        "id": None,
        "name": None,
        "avatar": None,
        "invalid_session_id": True,
        "qr_code_expired": True,
    }


class LoginPoller:
    """Poll one login session until it is approved or expires.

    Each call to tick() polls the service once. The poller resolves when
    the session is approved, when the service says the session id is no
    longer valid, or after max_attempts unresolved ticks. Errors during a
    tick count as an unresolved tick.
    """

    def __init__(self, session_id: str, max_attempts: int = MAX_ATTEMPTS) -> None:
        self.session_id = session_id
        self.max_attempts = max_attempts
        self.attempts = 0
        self.state = IDLE
        self.result: Optional[Dict[str, Any]] = None

    def start(self) -> None:
        if self.state == IDLE:
            self.state = POLLING

    def cancel(self) -> None:
        self.state = RESOLVED

    @property
    def approved(self) -> bool:
        return bool(self.result) and not self.result["qr_code_expired"]

    @property
    def expired(self) -> bool:
        return bool(self.result) and self.result["qr_code_expired"]

    def _resolve(self, result: Dict[str, Any]) -> None:
        self.result = result
        self.state = RESOLVED

    def tick(self) -> Optional[Dict[str, Any]]:
        if self.state != POLLING:
            return self.result

        try:
            status = api.poll_login_status(self.session_id)
        except (requests.RequestException, api.ApiError) as e:
            log.debug("Login status check failed: %s", e)
        else:
            if status["invalid_session_id"]:
                self._resolve(_expired_status())
                return self.result
            if status["status"] and status["token"]:
                self._resolve({**status, "qr_code_expired": False})
                return self.result

        self.attempts += 1
        if self.attempts >= self.max_attempts:
            log.info("Login session %s expired after %d attempts", self.session_id, self.attempts)
            self._resolve(_expired_status())
        return self.result

    def run(self, interval: float = POLL_INTERVAL) -> Optional[Dict[str, Any]]:
        """Tick every `interval` seconds until resolved."""
        self.start()
        while self.state == POLLING:
            time.sleep(interval)
            self.tick()
        return self.result


def render_qr(session_id: str, out=None) -> None:
    """Print the session id as a scannable QR code."""
    out = out or sys.stdout
    qr = qrcode.QRCode(border=1)
    qr.add_data(session_id)
    qr.make(fit=True)
    qr.print_ascii(out=out, invert=True)
    out.write(f"\nSession: {session_id}\n")
    out.flush()


def complete_login(settings, vault, session_id: str, status: Dict[str, Any]) -> None:
    """Save an approved binding and pull whatever is already queued."""
    settings.token = status["token"]
    settings.user = {
        "id": status["id"],
        "name": status["name"] or DEFAULT_USER_NAME,
    }
    settings.session_id = session_id
    settings.save()
    log.info("Logged in as %s", settings.user["name"])

    sync_mod.sync(settings, vault)


def login_interactive(settings, vault) -> bool:
    """Interactive login. Returns True once an account is bound."""
    print("Newledge Account Login")
    print("=" * 40)
    print()
    print("Scan the code below in the Newledge app:")
    print("Profile > Integrations > Sync to Obsidian")
    print()

    while True:
        session_id = api.issue_session()
        render_qr(session_id)
        print()
        print("Waiting for approval...")

        poller = LoginPoller(session_id)
        result = poller.run()

        if poller.expired:
            answer = input("QR code expired. Press Enter to refresh, or q to quit: ")
            if answer.strip().lower() == "q":
                return False
            continue

        if result is None:
            return False

        print()
        print(f"Success! Logged in as {result['name'] or DEFAULT_USER_NAME}")
        complete_login(settings, vault, session_id, result)
        return True