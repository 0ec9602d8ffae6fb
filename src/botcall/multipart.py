"""Streaming ``multipart/form-data`` body built from an ordered list of parts."""

from __future__ import annotations

import asyncio
import secrets
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import IO, Final, Union

from urllib3.fields import RequestField

__all__ = ["CHUNK_SIZE", "MultipartPart", "MultipartStream", "PartBody", "new_boundary"]

CHUNK_SIZE: Final[int] = 64 * 1024
_CRLF: Final[bytes] = b"\r\n"

PartBody = Union[str, bytes, bytearray, memoryview, IO[bytes], AsyncIterable[bytes]]


def new_boundary() -> str:
    """Return a fresh random hex boundary."""

    return secrets.token_hex(32)


@dataclass(slots=True)
class MultipartPart:
    """One form field: a text value or a binary body with a filename."""

    name: str
    body: PartBody
    filename: str | None = None
    content_type: str | None = None
    closer: Callable[[], Awaitable[None]] | None = field(default=None, repr=False)

    def render_headers(self) -> bytes:
        request_field = RequestField(name=self.name, data=b"", filename=self.filename)
        request_field.make_multipart(content_type=self.content_type)
        return request_field.render_headers().encode("utf-8")

    async def release(self) -> None:
        """Run the part's closer once; later calls are no-ops."""

        closer, self.closer = self.closer, None
        if closer is not None:
            await closer()


async def _iter_body(body: PartBody, chunk_size: int) -> AsyncIterator[bytes]:
    if isinstance(body, str):
        yield body.encode("utf-8")
    elif isinstance(body, (bytes, bytearray, memoryview)):
        yield bytes(body)
    elif isinstance(body, AsyncIterable):
        async for chunk in body:
            if chunk:
                yield bytes(chunk)
    elif hasattr(body, "read"):
        while True:
            chunk = await asyncio.to_thread(body.read, chunk_size)
            if not chunk:
                break
            yield bytes(chunk)
    else:
        raise TypeError(f"Unsupported multipart body type: {type(body).__name__}")


class MultipartStream:
    """
    Ordered collection of ``MultipartPart`` objects rendered lazily.

    Iterating the stream (``async for chunk in stream``) yields the encoded
    body chunk by chunk without buffering binary parts. Parts that own a
    resource (opened files, streamed HTTP responses) are released as soon as
    their body has been written; ``aclose`` releases whatever is left when
    the stream is abandoned.
    """

    def __init__(self, boundary: str | None = None, *, chunk_size: int = CHUNK_SIZE) -> None:
        self.boundary = boundary or new_boundary()
        self._chunk_size = chunk_size
        self._parts: list[MultipartPart] = []

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    @property
    def parts(self) -> tuple[MultipartPart, ...]:
        return tuple(self._parts)

    def add_part(self, part: MultipartPart) -> None:
        self._parts.append(part)

    def get_part(self, name: str) -> MultipartPart | None:
        for part in self._parts:
            if part.name == name:
                return part
        return None

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.iter_bytes()

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        delimiter = b"--" + self.boundary.encode("ascii") + _CRLF
        try:
            for part in self._parts:
                yield delimiter + part.render_headers()
                async for chunk in _iter_body(part.body, self._chunk_size):
                    yield chunk
                await part.release()
                yield _CRLF
            yield b"--" + self.boundary.encode("ascii") + b"--" + _CRLF
        finally:
            await self.aclose()

    async def read(self) -> bytes:
        """Return the whole encoded body; meant for small payloads and tests."""

        return b"".join([chunk async for chunk in self])

    async def aclose(self) -> None:
        for part in self._parts:
            await part.release()
