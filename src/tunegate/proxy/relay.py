"""Relay an upstream httpx response to the client without buffering it."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import structlog
from starlette.responses import Response, StreamingResponse

log = structlog.get_logger(__name__)


async def relay_response(
    upstream: httpx.Response,
    headers: dict[str, str],
    *,
    head_only: bool = False,
) -> Response:
    """Wrap an open streaming *upstream* response, preserving its status code.

    The upstream response is closed once the body has been relayed, or right
    away for HEAD requests.
    """
    if "content-encoding" in upstream.headers:
        # httpx hands out decoded bytes, so the upstream length no longer holds.
        headers.pop("content-length", None)

    if head_only:
        await upstream.aclose()
        response = Response(status_code=upstream.status_code, headers=headers)
        if "content-length" not in headers and "content-length" in response.headers:
            # The empty body would otherwise advertise a zero-length resource.
            del response.headers["content-length"]
        return response

    async def body() -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            # Headers are already out; end the stream and let the player retry.
            log.warning("upstream_stream_interrupted", url=str(upstream.url), error=str(exc))
        finally:
            await upstream.aclose()

    return StreamingResponse(body(), status_code=upstream.status_code, headers=headers)
