"""Newledge service client.

Covers login sessions, the integration binding, and the sync task queue:
listing pending tasks, fetching their content, and acknowledging outcomes.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from newledge import config

log = logging.getLogger(__name__)

_MAX_RETRIES = 2
_RETRY_DELAY_BASE = 2  # seconds; exponential: 2, 4
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class ApiError(RuntimeError):
    """The service answered with something we cannot use."""


class AuthError(ApiError):
    """The token was rejected; the binding must be re-established."""


def _headers(token: Optional[str] = None) -> dict:
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _url(path: str) -> str:
    return f"{config.API_URL}{path}"


def _request_with_retry(
    method: str, url: str, retries: int = _MAX_RETRIES, **kwargs,
) -> requests.Response:
    """HTTP request with retry on transient failures.

    Retries on ConnectionError, Timeout, and 5xx/429 with exponential backoff.
    401 raises AuthError; other 4xx errors propagate immediately.
    """
    last_exc = None
    for attempt in range(retries + 1):
        try:
            resp = requests.request(method, url, timeout=config.HTTP_TIMEOUT, **kwargs)

            if resp.status_code in _RETRYABLE_STATUS and attempt < retries:
                delay = _RETRY_DELAY_BASE * (2 ** attempt)
                log.warning(
                    "Newledge returned %d, retrying in %ds (%d/%d)",
                    resp.status_code, delay, attempt + 1, retries,
                )
                time.sleep(delay)
                continue

            if resp.status_code == 401:
                raise AuthError(f"Token rejected by {url}")

            resp.raise_for_status()
            return resp

        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
            last_exc = exc
            if attempt < retries:
                delay = _RETRY_DELAY_BASE * (2 ** attempt)
                log.warning(
                    "Newledge request failed (%s), retrying in %ds (%d/%d)",
                    type(exc).__name__, delay, attempt + 1, retries,
                )
                time.sleep(delay)
            else:
                raise

    raise last_exc  # type: ignore[misc]


def _get(path: str, token: Optional[str] = None, **kwargs) -> requests.Response:
    return _request_with_retry("GET", _url(path), headers=_headers(token), **kwargs)


def _post(path: str, token: Optional[str] = None, **kwargs) -> requests.Response:
    return _request_with_retry("POST", _url(path), headers=_headers(token), **kwargs)


def _json(resp: requests.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise ApiError(f"Invalid JSON from {resp.url}") from exc
    if not isinstance(data, dict):
        raise ApiError(f"Unexpected response from {resp.url}: {data!r}")
    return data


# -- Login --


def issue_session() -> str:
    """Ask the service for a fresh, short-lived login session id."""
    data = _json(_post("/login/session"))
    session_id = data.get("sessionId")
    if not session_id:
        raise ApiError("No sessionId in login session response")
    return session_id


def poll_login_status(session_id: str) -> Dict[str, Any]:
    """Check once whether the session has been approved on the phone.

    Single attempt: the caller polls on its own schedule.
    """
    data = _json(_get("/login/status", params={"sessionId": session_id}, retries=0))
    return {
        "status": bool(data.get("status")),
        "token": data.get("token"),
        "id": data.get("id"),
        "name": data.get("name"),
        "avatar": data.get("avatar"),
        "invalid_session_id": bool(data.get("invalidSessionId")),
    }


# -- Integration --


def check_integration(session_id: str, token: str) -> Dict[str, Any]:
    """Return whether the binding is still active and how many tasks failed."""
    data = _json(_get("/integration", token=token, params={"sessionId": session_id}))
    return {
        "valid": bool(data.get("valid")),
        "failed_task_count": int(data.get("failedTaskCount") or 0),
    }


def unbind(token: str) -> None:
    _post("/integration/unbind", token=token)


def retry_failed(token: str) -> None:
    """Put every failed task back on the pending queue."""
    _post("/sync/tasks/retry", token=token)


# -- Sync tasks --


def list_pending_tasks(token: str) -> Dict[str, Any]:
    """Fetch one page of pending tasks.

    Returns {"valid", "limit", "page_size", "result": [{"id": ...}, ...]}.
    Entries without an id are left out of result, but page_size still
    counts them so a full page is recognized as full. The service removes
    tasks from the queue once they are acknowledged, so calling this
    repeatedly walks the queue.
    """
    data = _json(_get("/sync/tasks", token=token))
    raw = data.get("result") or []
    return {
        "valid": bool(data.get("valid")),
        "limit": int(data.get("limit") or 0),
        "page_size": len(raw),
        "result": [
            {"id": str(task["id"])}
            for task in raw
            if task.get("id") is not None
        ],
    }


def fetch_note_content(task_id: str, token: str) -> Dict[str, Any]:
    """Fetch the note behind a task. A task that no longer exists has id None."""
    return extract_note(_json(_get(f"/sync/tasks/{task_id}/content", token=token)))


def ack_success(task_id: str, token: str) -> None:
    _post(f"/sync/tasks/{task_id}/success", token=token)


def ack_failure(task_id: str, token: str, error: str) -> None:
    _post(f"/sync/tasks/{task_id}/failed", token=token, json={"error": error})


# -- Parsing --


def _property_list(raw: Any) -> List[Dict[str, Any]]:
    props = []
    for prop in raw or []:
        if not isinstance(prop, dict) or not prop.get("key"):
            continue
        value = prop.get("value")
        if isinstance(value, list):
            value = [str(v) for v in value if v is not None]
        elif value is None:
            value = ""
        else:
            value = str(value)
        props.append({"key": str(prop["key"]), "value": value})
    return props


def extract_note(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a note content response into a flat dict."""
    return {
        "id": data.get("id"),
        "title": data.get("title") or "",
        "super_type": data.get("superType") or "",
        "note_type": data.get("noteType") or "",
        "properties": _property_list(data.get("properties")),
        "text": data.get("text") or "",
        "tag_list": [str(t) for t in data.get("tagList") or [] if t],
        "related_content_title": data.get("relatedContentTitle") or "",
        "related_content_super_type": data.get("relatedContentSuperType") or "",
    }
