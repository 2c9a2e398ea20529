"""Response header policy shared by the audio proxy and the API forwarder."""

from __future__ import annotations

from collections.abc import Mapping

SAFE_RESPONSE_HEADERS = frozenset(
    {
        "content-type",
        "cache-control",
        "accept-ranges",
        "content-length",
        "content-range",
        "etag",
        "last-modified",
        "expires",
    }
)

DEFAULT_CACHE_CONTROL = "no-store"


def sanitize_headers(
    upstream: Mapping[str, str] | None,
    *,
    cache_control: str = DEFAULT_CACHE_CONTROL,
) -> dict[str, str]:
    """Keep only whitelisted upstream headers and add open CORS.

    Header names are matched case-insensitively and returned lower-cased.
    Upstream CORS and cookie headers never survive.  ``cache_control`` is
    used when the upstream did not send one.
    """
    headers: dict[str, str] = {}
    if upstream is not None:
        for name, value in upstream.items():
            lowered = name.lower()
            if lowered in SAFE_RESPONSE_HEADERS:
                headers[lowered] = value
    headers.setdefault("cache-control", cache_control)
    headers["access-control-allow-origin"] = "*"
    return headers
