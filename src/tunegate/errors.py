"""Errors raised by the gateway and converted to HTTP responses at the route boundary."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for request-level failures with a fixed HTTP status."""

    status_code: int = 500
    detail: str = "Internal error"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class InvalidTarget(GatewayError):
    """Proxy target URL is malformed, uses another scheme, or names a foreign host."""

    status_code = 400
    detail = "Invalid target"


class MissingParameter(GatewayError):
    """A parameter the upstream API requires is absent."""

    status_code = 400
    detail = "Missing types"


class UpstreamFetchError(GatewayError):
    """Transport failure while contacting an upstream. Never retried."""

    status_code = 502
    detail = "Upstream fetch error"


class InvalidPayload(GatewayError):
    """Storage write body is not a flat key/value mapping."""

    status_code = 400
    detail = "Invalid payload"


class UnsupportedMethod(GatewayError):
    """HTTP method the route does not serve."""

    status_code = 405
    detail = "Method not allowed"
