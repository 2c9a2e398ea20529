"""Forwarder for the fixed upstream JSON API."""

from __future__ import annotations

from collections.abc import Iterable

import httpx
import structlog
from starlette.requests import Request
from starlette.responses import Response

from tunegate.config import ProxyPolicy
from tunegate.errors import MissingParameter, UpstreamFetchError
from tunegate.proxy.relay import relay_response
from tunegate.proxy.sanitizer import sanitize_headers

log = structlog.get_logger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

# Consumed by the gateway itself, never sent upstream.
CONTROL_PARAMS = frozenset({"target", "callback"})


class ApiForwarder:
    """Rewrite an inbound query onto the upstream API base and relay the answer."""

    def __init__(self, policy: ProxyPolicy, client: httpx.AsyncClient) -> None:
        self._policy = policy
        self._client = client

    def build_url(self, params: Iterable[tuple[str, str]]) -> httpx.URL:
        """Merge inbound query pairs onto the API base URL.

        A repeated parameter keeps its last value.  Raises
        :class:`MissingParameter` if the result carries no ``types``.
        """
        url = httpx.URL(self._policy.api_base_url)
        query = url.params
        for key, value in params:
            if key in CONTROL_PARAMS:
                continue
            query = query.set(key, value)
        if "types" not in query:
            raise MissingParameter
        return url.copy_with(params=query)

    async def forward(self, params: Iterable[tuple[str, str]], request: Request) -> Response:
        url = self.build_url(params)
        headers = {
            "User-Agent": request.headers.get("user-agent") or self._policy.default_user_agent,
            "Accept": "application/json",
        }
        try:
            upstream = await self._client.send(
                self._client.build_request("GET", url, headers=headers), stream=True
            )
        except (httpx.HTTPError, UnicodeEncodeError) as exc:
            log.error("api_fetch_failed", url=str(url), error=str(exc))
            raise UpstreamFetchError from exc

        log.info("api_forwarded", types=url.params.get("types"), status=upstream.status_code)
        out_headers = sanitize_headers(upstream.headers)
        out_headers.setdefault("content-type", JSON_CONTENT_TYPE)
        return await relay_response(upstream, out_headers)
