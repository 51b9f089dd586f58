import asyncio
import logging
from typing import AsyncIterator, List, Optional, Tuple

import httpx
from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response

from genai_proxy.auth import (
    RotationTable,
    parse_authorization,
    require_token,
    resolve_credential,
)
from genai_proxy.config import Config
from genai_proxy.errors import UpstreamBuildError, UpstreamCallError
from genai_proxy.headers import HOP_BY_HOP_HEADERS, client_ip, sanitize_headers
from genai_proxy.models import UpstreamCredential
from genai_proxy.routing import resolve_base_url
from genai_proxy.streaming import RelayResponse

logger = logging.getLogger(__name__)

HELICONE_AUTH_HEADER = "Helicone-Auth"
HELICONE_USER_HEADER = "Helicone-User-Id"

# Non-standard status used when the client went away before a response existed.
CLIENT_CLOSED_REQUEST = 499


class InboundBody:
    """Streams the inbound request body to httpx without buffering it."""

    def __init__(self, request: Request):
        self._request = request
        self.present = (
            "content-length" in request.headers
            or "transfer-encoding" in request.headers
        )
        self.consumed = asyncio.Event()
        if not self.present:
            self.consumed.set()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._request.stream():
            if chunk:
                yield chunk
        self.consumed.set()


def _request_target(request: Request) -> str:
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    query = request.url.query
    return f"{path}?{query}" if query else path


def build_upstream_headers(
    request: Request, credential: UpstreamCredential, config: Config
) -> List[Tuple[str, str]]:
    """
    Build outbound headers for the upstream call.

    1. Resolve the client IP while the forwarding headers are still present
    2. Drop client-identifying, hop-by-hop and the caller's authorization headers
    3. Set the upstream authorization
    4. Re-assert body framing from the inbound request
    5. Add telemetry relay headers when a relay credential is configured
    """
    peer = request.client.host if request.client else None
    caller_ip = client_ip(request.headers, peer)

    headers = [
        (k, v)
        for k, v in sanitize_headers(request.headers.items())
        if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != "authorization"
    ]
    headers.append(("authorization", credential.authorization))

    content_length = request.headers.get("content-length")
    if content_length is not None:
        headers.append(("content-length", content_length))
    elif "transfer-encoding" in request.headers:
        headers.append(("transfer-encoding", "chunked"))

    if config.helicone_api_key:
        headers.append((HELICONE_AUTH_HEADER, f"Bearer {config.helicone_api_key}"))
        headers.append((HELICONE_USER_HEADER, caller_ip))

    return headers


def build_upstream_request(
    request: Request,
    http_client: httpx.AsyncClient,
    base_url: str,
    credential: UpstreamCredential,
    config: Config,
    body: InboundBody,
) -> httpx.Request:
    url = base_url.rstrip("/") + _request_target(request)
    try:
        outbound = http_client.build_request(
            method=request.method,
            url=url,
            headers=build_upstream_headers(request, credential, config),
            content=body if body.present else None,
        )
    except (httpx.InvalidURL, ValueError) as exc:
        logger.error("Error creating proxy request for %r: %s", url, exc)
        raise UpstreamBuildError(detail=str(exc)) from exc

    if outbound.url.scheme not in ("http", "https") or not outbound.url.host:
        logger.error("Error creating proxy request: unusable upstream URL %r", url)
        raise UpstreamBuildError(detail=f"Unusable upstream URL {url!r}")
    return outbound


async def _wait_for_disconnect(request: Request, body: InboundBody) -> None:
    # The body stream owns receive() until it has been fully read.
    await body.consumed.wait()
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def send_upstream(
    http_client: httpx.AsyncClient,
    outbound: httpx.Request,
    request: Request,
    body: InboundBody,
) -> Optional[httpx.Response]:
    """Send the request and return the open response, headers only.

    Returns ``None`` if the client disconnects before the upstream answers; the
    in-flight upstream call is cancelled in that case.
    """
    send_task = asyncio.ensure_future(http_client.send(outbound, stream=True))
    watch_task = asyncio.ensure_future(_wait_for_disconnect(request, body))
    try:
        done, _ = await asyncio.wait(
            {send_task, watch_task}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        send_task.cancel()
        watch_task.cancel()
        raise

    if send_task in done:
        watch_task.cancel()
        await asyncio.gather(watch_task, return_exceptions=True)
        return send_task.result()

    send_task.cancel()
    results = await asyncio.gather(send_task, return_exceptions=True)
    if isinstance(results[0], httpx.Response):
        await results[0].aclose()
    # Re-raises if the watcher failed instead of seeing a disconnect.
    watch_task.result()
    return None


async def proxy_request(
    request: Request,
    rotation: RotationTable,
    http_client: httpx.AsyncClient,
    config: Config,
) -> Response:
    """
    Forward a request to the upstream API and relay the response.

    Flow:
    1. Parse the Authorization header (missing or malformed -> 400)
    2. Resolve the upstream credential (unknown virtual token -> 403)
    3. Resolve the base URL
    4. Build the outbound request with sanitized headers and the inbound body
    5. Send it; build or network failures -> 500, no retry
    6. Relay status, headers and body incrementally
    """
    token = require_token(parse_authorization(request.headers.get("authorization")))
    credential = await resolve_credential(token, config, rotation)
    base_url = resolve_base_url(config)
    body = InboundBody(request)

    outbound = build_upstream_request(
        request, http_client, base_url, credential, config, body
    )
    logger.info(
        "Forwarding %s %s to %s (%s token)",
        request.method,
        outbound.url.path,
        base_url,
        credential.token_kind,
    )

    try:
        upstream = await send_upstream(http_client, outbound, request, body)
    except httpx.RequestError as exc:
        logger.error("Error sending proxy request to %s: %s", base_url, exc)
        raise UpstreamCallError(detail=str(exc)) from exc
    except ClientDisconnect:
        logger.info("Client disconnected while sending the request body")
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    if upstream is None:
        logger.info("Client disconnected while waiting for %s", base_url)
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    logger.info("Upstream %s answered %d", base_url, upstream.status_code)
    return RelayResponse(upstream, per_char=config.relay_per_char)
