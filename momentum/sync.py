from __future__ import annotations

import logging
import re
from typing import Callable
from urllib.parse import urlsplit, urlunsplit

import requests

logger = logging.getLogger(__name__)

BackendRequester = Callable[[str], "tuple[int, str]"]


class BackendRefreshError(RuntimeError):
    pass


def build_backend_refresh_url(base_url: str) -> str:
    trimmed = (base_url or "").strip()
    if not trimmed:
        raise ValueError("backend refresh URL is empty")

    try:
        parts = urlsplit(trimmed)
        parts.port  # noqa: B018 - raises ValueError for a malformed port
    except ValueError as exc:
        raise ValueError("backend refresh URL is invalid") from exc
    if not parts.scheme or not parts.netloc:
        raise ValueError("backend refresh URL is invalid")

    path = parts.path
    if not path or path == "/":
        path = "/refresh"
    elif not path.endswith("/refresh"):
        path = re.sub(r"/+$", "", path) + "/refresh"

    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def post_backend_refresh(
    base_url: str,
    request: BackendRequester | None = None,
    timeout: float = 10,
) -> str:
    """POST to the backend refresh endpoint and return the URL that was called.

    ``request`` replaces the HTTP call with a function returning
    ``(status, body)``; by default :func:`requests.post` is used. Non-2xx
    responses raise BackendRefreshError.
    """
    refresh_url = build_backend_refresh_url(base_url)
    send = request or (lambda url: _post_with_requests(url, timeout))

    status, body = send(refresh_url)
    if status < 200 or status >= 300:
        detail = (body or "").strip()
        suffix = f": {detail}" if detail else ""
        raise BackendRefreshError(f"backend refresh failed ({status}{suffix})")

    logger.info("Backend refresh succeeded: %s", refresh_url)
    return refresh_url


def _post_with_requests(url: str, timeout: float) -> tuple[int, str]:
    response = requests.post(url, timeout=timeout)
    return response.status_code, response.text
