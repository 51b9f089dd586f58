"""Header filtering for both directions of the proxy."""

from typing import Iterable, List, Mapping, Optional, Tuple

import httpx

# Client and edge-network identifying headers, never forwarded upstream.
SANITIZED_HEADERS = frozenset(
    {
        "cf-connecting-ip",
        "x-forwarded-for",
        "x-real-ip",
        "x-envoy-external-address",
        "x-forwarded-host",
        "x-forwarded-proto",
        "cf-ray",
        "cf-visitor",
        "cf-ipcountry",
        "cf-request-id",
        "forwarded",
        "via",
    }
)

HOP_BY_HOP_HEADERS = frozenset(
    {
        "host",
        "connection",
        "keep-alive",
        "transfer-encoding",
        "te",
        "trailer",
        "upgrade",
        "proxy-authorization",
        "proxy-authenticate",
        "content-length",
    }
)

# The relay re-encodes decoded text, so the upstream framing no longer applies.
RELAY_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding"}


def sanitize_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Drop client-identifying headers, keeping everything else in order."""
    return [(k, v) for k, v in headers if k.lower() not in SANITIZED_HEADERS]


def client_ip(headers: Mapping[str, str], remote_addr: Optional[str]) -> str:
    """Best available client address: X-Forwarded-For, X-Real-IP, then peer."""
    for name in ("x-forwarded-for", "x-real-ip"):
        value = headers.get(name)
        if value:
            return value
    return remote_addr or ""


def response_headers(upstream_headers: httpx.Headers) -> List[Tuple[bytes, bytes]]:
    """Upstream response headers as raw ASGI pairs, multi-valued ones kept."""
    return [
        (k.lower(), v)
        for k, v in upstream_headers.raw
        if k.lower().decode("latin-1") not in RELAY_EXCLUDED_HEADERS
    ]
