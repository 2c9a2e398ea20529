"""Audio proxy for the single allow-listed media host."""

from __future__ import annotations

import httpx
import structlog
from starlette.requests import Request
from starlette.responses import Response

from tunegate.config import ProxyPolicy
from tunegate.errors import InvalidTarget, UpstreamFetchError
from tunegate.proxy.relay import relay_response
from tunegate.proxy.sanitizer import sanitize_headers

log = structlog.get_logger(__name__)

AUDIO_CACHE_CONTROL = "public, max-age=3600"

_ALLOWED_SCHEMES = ("http", "https")


class AudioProxy:
    """Forward one audio resource by URL with Range passthrough."""

    def __init__(self, policy: ProxyPolicy, client: httpx.AsyncClient) -> None:
        self._policy = policy
        self._client = client

    def normalize_target(self, raw_url: str) -> httpx.URL:
        """Validate *raw_url* and return the URL that will actually be fetched.

        Raises :class:`InvalidTarget` for unparsable URLs, schemes other than
        http/https, and hosts outside the allowed domain.  When the policy
        forces http, an https target is downgraded here.
        """
        try:
            url = httpx.URL(raw_url)
        except (httpx.InvalidURL, ValueError) as exc:
            raise InvalidTarget from exc

        if url.scheme not in _ALLOWED_SCHEMES:
            raise InvalidTarget
        if not self._policy.is_allowed_host(url.host):
            raise InvalidTarget

        if self._policy.force_http and url.scheme != "http":
            url = url.copy_with(scheme="http")
        return url

    def build_headers(self, request: Request) -> dict[str, str]:
        headers = {
            "User-Agent": request.headers.get("user-agent") or self._policy.default_user_agent,
            "Referer": self._policy.referer,
        }
        range_header = request.headers.get("range")
        if range_header:
            headers["Range"] = range_header
        return headers

    async def fetch(self, raw_url: str, request: Request) -> Response:
        try:
            url = self.normalize_target(raw_url)
        except InvalidTarget:
            log.warning("audio_target_rejected", target=raw_url)
            raise

        try:
            upstream_request = self._client.build_request(
                request.method, url, headers=self.build_headers(request)
            )
            upstream = await self._client.send(upstream_request, stream=True)
        except (httpx.HTTPError, UnicodeEncodeError) as exc:
            # Header values that will not encode never leave the gateway.
            log.error("audio_fetch_failed", target=str(url), error=str(exc))
            raise UpstreamFetchError from exc

        log.info(
            "audio_proxied",
            target=str(url),
            status=upstream.status_code,
            range=request.headers.get("range"),
        )
        headers = sanitize_headers(upstream.headers, cache_control=AUDIO_CACHE_CONTROL)
        return await relay_response(upstream, headers, head_only=request.method == "HEAD")
