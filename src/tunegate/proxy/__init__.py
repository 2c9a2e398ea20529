"""Upstream proxies: audio byte-range streaming and JSON API forwarding."""

from tunegate.proxy.api import ApiForwarder
from tunegate.proxy.audio import AudioProxy
from tunegate.proxy.sanitizer import sanitize_headers

__all__ = ["ApiForwarder", "AudioProxy", "sanitize_headers"]
