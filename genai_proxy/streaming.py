"""Incremental relay of upstream response bodies to the client.

The relay commits the upstream status and headers only once the first body
unit has been read. Until then an upstream read failure can still be turned
into a 500 response. After the commit the status line is on the wire, so a
later failure can only be signalled by ending the response without its final
body message, which makes the ASGI server abort the connection and leaves the
client with a truncated body. This is a best-effort guarantee.
"""

import codecs
import logging
from typing import AsyncGenerator, Optional

import anyio
import httpx
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from genai_proxy.errors import StreamingError
from genai_proxy.headers import response_headers

logger = logging.getLogger(__name__)

TEXT_MEDIA_TYPES = frozenset(
    {
        "application/json",
        "application/x-ndjson",
        "application/javascript",
        "application/xml",
    }
)


async def iter_text_units(
    upstream: httpx.Response, per_char: bool = True
) -> AsyncGenerator[bytes, None]:
    """Yield the upstream body as encoded whole characters.

    Decoding is incremental, so a multi-byte sequence split across network
    reads is only emitted once it is complete.

    Raises:
        StreamingError: If reading the upstream body fails.
    """
    encoding = upstream.encoding or "utf-8"
    # One encoder per body, so stateful codecs emit their BOM only once.
    encoder = codecs.getincrementalencoder(encoding)(errors="strict")

    def encode(text: str, final: bool = False) -> bytes:
        try:
            return encoder.encode(text, final)
        except UnicodeEncodeError as exc:
            logger.warning(
                "Upstream body does not fit its declared charset %s, "
                "replacing unencodable characters: %s",
                encoding,
                exc,
            )
            encoder.errors = "replace"
            return encoder.encode(text, final)

    try:
        async for text in upstream.aiter_text():
            if not text:
                continue
            if per_char:
                for char in text:
                    yield encode(char)
            else:
                yield encode(text)
    except (httpx.HTTPError, httpx.StreamError) as exc:
        raise StreamingError(detail=f"{type(exc).__name__}: {exc}") from exc

    tail = encode("", final=True)
    if tail:
        yield tail


async def iter_byte_chunks(upstream: httpx.Response) -> AsyncGenerator[bytes, None]:
    """Yield a binary upstream body chunk by chunk, as received."""
    try:
        async for chunk in upstream.aiter_bytes():
            if chunk:
                yield chunk
    except (httpx.HTTPError, httpx.StreamError) as exc:
        raise StreamingError(detail=f"{type(exc).__name__}: {exc}") from exc


def is_textual(content_type: Optional[str]) -> bool:
    # Bodies without a declared type are relayed as text.
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return (
        media_type.startswith("text/")
        or media_type.endswith("+json")
        or media_type in TEXT_MEDIA_TYPES
    )


class RelayResponse(Response):
    """ASGI response that streams an open ``httpx.Response`` to the client.

    The upstream response is closed on every exit path, including client
    disconnects, which cancel the relay as soon as ``http.disconnect`` is
    received.
    """

    def __init__(self, upstream: httpx.Response, per_char: bool = True) -> None:
        self.upstream = upstream
        self.per_char = per_char
        self.status_code = upstream.status_code
        self.media_type = upstream.headers.get("content-type")
        self.background = None
        self.raw_headers = response_headers(upstream.headers)
        self.committed = False
        self.finished = False
        self.units_sent = 0

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            async with anyio.create_task_group() as task_group:

                async def watch_disconnect() -> None:
                    await self._wait_for_disconnect(receive)
                    if not self.finished:
                        logger.info(
                            "Client disconnected after %d units, stopping relay",
                            self.units_sent,
                        )
                    task_group.cancel_scope.cancel()

                task_group.start_soon(watch_disconnect)
                await self.relay(send)
                task_group.cancel_scope.cancel()
        finally:
            await self.upstream.aclose()

        if self.background is not None:
            await self.background()

    def iter_units(self) -> AsyncGenerator[bytes, None]:
        if is_textual(self.media_type):
            return iter_text_units(self.upstream, per_char=self.per_char)
        return iter_byte_chunks(self.upstream)

    async def relay(self, send: Send) -> None:
        units = self.iter_units()
        try:
            first: Optional[bytes]
            try:
                first = await units.__anext__()
            except StopAsyncIteration:
                first = None
            except StreamingError as exc:
                logger.error(
                    "Upstream body failed before any output (status=%s): %s",
                    self.status_code,
                    exc,
                )
                await self._send_error(send, exc)
                return

            await send(
                {
                    "type": "http.response.start",
                    "status": self.status_code,
                    "headers": self.raw_headers,
                }
            )
            self.committed = True

            if first is not None:
                await self._send_unit(send, first)
                async for unit in units:
                    await self._send_unit(send, unit)

            await send({"type": "http.response.body", "body": b"", "more_body": False})
            self.finished = True
        except StreamingError as exc:
            logger.error(
                "Upstream body failed after %d units, truncating response: %s",
                self.units_sent,
                exc,
            )
        except OSError as exc:
            logger.info("Client write failed, stopping relay: %s", exc)
        finally:
            await units.aclose()

    async def _send_unit(self, send: Send, unit: bytes) -> None:
        await send({"type": "http.response.body", "body": unit, "more_body": True})
        self.units_sent += 1

    async def _send_error(self, send: Send, exc: StreamingError) -> None:
        response = exc.to_response()
        await send(
            {
                "type": "http.response.start",
                "status": response.status_code,
                "headers": response.raw_headers,
            }
        )
        await send({"type": "http.response.body", "body": response.body})
        self.finished = True

    @staticmethod
    async def _wait_for_disconnect(receive: Receive) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
