import logging
import requests
from django.conf import settings


logger = logging.getLogger(__name__)


class BackendError(Exception):
    """The backend could not be reached or answered with something unusable."""


class BackendAuthError(BackendError):
    pass


def _headers(access_token: str, extra: dict | None = None):
    if not access_token:
        raise BackendAuthError("No active session found")
    h = {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/json",
    }
    if settings.BACKEND_ANON_KEY:
        h["apikey"] = settings.BACKEND_ANON_KEY
    if extra:
        h.update(extra)
    return h


def _rest_url(table: str):
    if not settings.BACKEND_REST_URL:
        raise BackendError("BACKEND_REST_URL is not configured")
    return f"{settings.BACKEND_REST_URL}/{table.lstrip('/')}"


def _api_url(path: str):
    return f"{settings.BACKEND_API_URL}/{path.lstrip('/')}"


def _auth_url(path: str):
    if not settings.BACKEND_AUTH_URL:
        raise BackendError("BACKEND_AUTH_URL is not configured")
    return f"{settings.BACKEND_AUTH_URL}/{path.lstrip('/')}"


def _send(method, url, access_token, params=None, payload=None, extra_headers=None):
    headers = _headers(access_token, extra_headers)
    if payload is not None:
        headers["Content-Type"] = "application/json"
    try:
        r = requests.request(
            method,
            url,
            headers=headers,
            params=params,
            json=payload,
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
        )
        r.raise_for_status()
    except requests.HTTPError as e:
        resp = getattr(e, "response", None)
        body = resp.text if resp is not None else ""
        logger.error(
            "Backend %s %s failed: %s %s",
            method,
            url,
            getattr(resp, "status_code", ""),
            body[:500],
        )
        status = getattr(resp, "status_code", None)
        if status in (401, 403):
            raise BackendAuthError(f"{method} {url} rejected the access token") from e
        raise BackendError(f"{method} {url} returned {status or '?'}") from e
    except requests.RequestException as e:
        logger.error("Backend %s %s unreachable: %s", method, url, str(e))
        raise BackendError(f"{method} {url} unreachable") from e
    if not r.content:
        return None
    try:
        return r.json()
    except ValueError as e:
        logger.error("Backend %s %s returned non-JSON body", method, url)
        raise BackendError(f"{method} {url} returned a non-JSON body") from e


def rest_get(access_token: str, table: str, params=None):
    return _send("GET", _rest_url(table), access_token, params=params)


def rest_patch(access_token: str, table: str, params, payload: dict):
    return _send(
        "PATCH",
        _rest_url(table),
        access_token,
        params=params,
        payload=payload,
        extra_headers={"Prefer": "return=minimal"},
    )


def api_get(access_token: str, path: str, params=None):
    return _send("GET", _api_url(path), access_token, params=params)


def api_post(access_token: str, path: str, payload: dict):
    return _send("POST", _api_url(path), access_token, payload=payload)


def auth_get_user(access_token: str):
    """The backend account the access token belongs to."""
    return _send("GET", _auth_url("user"), access_token)
