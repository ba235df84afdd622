"""Account checks: is the stored token usable and the binding still active?"""

import logging
import time
from typing import Any, Dict, Optional

import jwt
import requests

from newledge import api

log = logging.getLogger(__name__)

# Only the expiry is read; the signature belongs to the service
_DECODE_OPTIONS = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


def check_token(token: Optional[str], now: Optional[float] = None) -> Dict[str, bool]:
    """Check a bearer token's shape and expiry without verifying its signature.

    Returns {"format": bool, "un_expired": bool}. A token that does not
    decode, or carries no numeric exp claim, fails both checks.
    """
    if not token:
        return {"format": False, "un_expired": False}

    try:
        claims = jwt.decode(token, options=_DECODE_OPTIONS)
    except jwt.PyJWTError:
        return {"format": False, "un_expired": False}

    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return {"format": False, "un_expired": False}

    if now is None:
        now = time.time()
    return {"format": True, "un_expired": now < exp}


def check_account(settings) -> Dict[str, Any]:
    """Validate the stored binding against the token and the service.

    Clears the stored account when the token or the integration is invalid,
    so the next run asks for a fresh login. A network failure only reports
    the account as invalid for now; nothing is cleared.
    """
    token = settings.token
    session_id = settings.session_id

    token_check = check_token(token)
    token_valid = token_check["format"] and token_check["un_expired"]
    if token and not token_valid:
        log.info("Stored token is %s", "expired" if token_check["format"] else "malformed")

    integration_valid = False
    failed_task_count = 0
    if token_valid and token and session_id:
        try:
            integration = api.check_integration(session_id, token)
        except api.AuthError:
            log.info("Service rejected the stored token")
        except (requests.RequestException, api.ApiError) as e:
            log.warning("Could not check integration: %s", e)
            return {"valid": False, "failed_task_count": 0}
        else:
            integration_valid = integration["valid"]
            failed_task_count = integration["failed_task_count"]

    if not token_valid or not integration_valid:
        if token or session_id:
            log.info("Account binding is no longer valid, clearing it")
        settings.clear_account()
        settings.save()

    return {
        "valid": token_valid and integration_valid,
        "failed_task_count": failed_task_count,
    }
