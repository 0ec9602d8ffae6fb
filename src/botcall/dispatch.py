"""Deliver an encoded call over an inbound webhook response or an outbound request."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from http import HTTPStatus
from typing import Any, Protocol, runtime_checkable

import httpx

from src.botcall.multipart import MultipartStream
from src.botcall.params import stringify_json_fields
from src.botcall.payload import RequestConfig, build_json_config

logger = logging.getLogger(__name__)

__all__ = [
    "ResponseSink",
    "StreamWriterSink",
    "reply_to_webhook",
    "send_outbound",
    "write_to_sink",
]


@runtime_checkable
class ResponseSink(Protocol):
    """Still-open inbound HTTP response a call can be answered on."""

    @property
    def headers_sent(self) -> bool:
        """Return ``True`` once the status line and headers have been written."""
        ...

    def set_header(self, name: str, value: str) -> None:
        """Queue a header; only valid while ``headers_sent`` is ``False``."""
        ...

    async def write(self, data: bytes) -> None:
        """Write *data*, flushing headers first when needed."""
        ...

    async def end(self) -> None:
        """Finish the response and return once it has fully drained."""
        ...


class StreamWriterSink:
    """``ResponseSink`` writing a raw HTTP/1.1 response to an ``asyncio.StreamWriter``."""

    def __init__(self, writer: asyncio.StreamWriter, *, status: int = 200) -> None:
        self._writer = writer
        self._status = HTTPStatus(status)
        self._headers: dict[str, str] = {}
        self._headers_sent = False

    @property
    def headers_sent(self) -> bool:
        return self._headers_sent

    def set_header(self, name: str, value: str) -> None:
        if self._headers_sent:
            raise RuntimeError("Cannot set headers after they are sent")
        self._headers[name.lower()] = value

    def _flush_headers(self) -> None:
        if self._headers_sent:
            return
        self._headers.setdefault("connection", "close")
        lines = [f"HTTP/1.1 {self._status.value} {self._status.phrase}"]
        lines.extend(f"{name}: {value}" for name, value in self._headers.items())
        self._writer.write(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1"))
        self._headers_sent = True

    async def write(self, data: bytes) -> None:
        self._flush_headers()
        self._writer.write(data)
        await self._writer.drain()

    async def end(self) -> None:
        self._flush_headers()
        await self._writer.drain()
        self._writer.close()
        await self._writer.wait_closed()


async def write_to_sink(sink: ResponseSink, config: RequestConfig) -> None:
    """Write *config* onto *sink* and wait until the response has completed."""

    if not sink.headers_sent:
        for name, value in config.headers.items():
            if name == "connection":
                continue
            sink.set_header(name, value)
        if isinstance(config.body, bytes):
            sink.set_header("content-length", str(len(config.body)))
    if isinstance(config.body, MultipartStream):
        async for chunk in config.body:
            await sink.write(chunk)
    else:
        await sink.write(config.body)
    await sink.end()


async def reply_to_webhook(sink: ResponseSink, method: str, payload: Mapping[str, Any]) -> bool:
    """
    Answer *method* on the inbound response as a webhook reply.

    Webhook replies are always JSON; callers route calls that carry
    attachments through ``send_outbound`` instead.
    """

    config = build_json_config(stringify_json_fields({"method": method, **payload}))
    await write_to_sink(sink, config)
    logger.info("Answered %s via webhook reply", method)
    return True


async def send_outbound(
    client: httpx.AsyncClient,
    url: str,
    config: RequestConfig,
) -> httpx.Response:
    """POST *config* to *url*; multipart bodies are streamed, never buffered."""

    try:
        return await client.request(
            config.method,
            url,
            content=config.body,
            headers=dict(config.headers),
        )
    finally:
        if isinstance(config.body, MultipartStream):
            await config.body.aclose()
