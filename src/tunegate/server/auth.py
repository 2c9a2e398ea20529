"""Shared-secret cookie gate in front of every non-public route.

A pure ASGI middleware rather than ``BaseHTTPMiddleware`` so proxied audio
streams are never buffered.
"""

from __future__ import annotations

import base64
import hmac
import re

from starlette.requests import HTTPConnection
from starlette.responses import RedirectResponse
from starlette.types import ASGIApp, Receive, Scope, Send

LOGIN_PATH = "/login"
AUTH_COOKIE = "auth"

PUBLIC_PATH_PATTERNS = (
    re.compile(r"^/login(?:/|$)"),
    re.compile(r"^/api/login(?:/|$)"),
)
PUBLIC_FILE_EXTENSIONS = frozenset(
    {
        ".css",
        ".js",
        ".png",
        ".svg",
        ".jpg",
        ".jpeg",
        ".gif",
        ".webp",
        ".ico",
        ".txt",
        ".map",
        ".json",
        ".woff",
        ".woff2",
    }
)


def is_public_path(path: str) -> bool:
    if any(pattern.search(path) for pattern in PUBLIC_PATH_PATTERNS):
        return True
    dot = path.rfind(".")
    if dot == -1:
        return False
    return path[dot:].lower() in PUBLIC_FILE_EXTENSIONS


def expected_cookie(password: str) -> str:
    return base64.b64encode(password.encode("utf-8")).decode("ascii")


class AuthGateMiddleware:
    """Redirect to the login page unless the ``auth`` cookie matches the password.

    An empty password disables the gate.
    """

    def __init__(self, app: ASGIApp, password: str) -> None:
        self.app = app
        self._expected = expected_cookie(password) if password else None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self._expected is None or is_public_path(scope["path"]):
            await self.app(scope, receive, send)
            return

        supplied = HTTPConnection(scope).cookies.get(AUTH_COOKIE, "")
        if hmac.compare_digest(supplied.encode("utf-8"), self._expected.encode("ascii")):
            await self.app(scope, receive, send)
            return

        response = RedirectResponse(LOGIN_PATH, status_code=302)
        await response(scope, receive, send)
