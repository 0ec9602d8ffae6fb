"""Attachment resolution: turn one ``InputFile`` into a binary multipart part."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import stat
from collections.abc import AsyncIterable, Awaitable, Callable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import IO, Final

import httpx

from src.botcall.errors import AttachmentFetchError, InvalidAttachmentSource
from src.botcall.multipart import MultipartPart, MultipartStream
from src.botcall.net import ATTACHMENT_TIMEOUT_SECONDS, redact_url_for_logs
from src.botcall.params import InputFile

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS: Final[Mapping[str, str]] = MappingProxyType(
    {
        "audio": "mp3",
        "photo": "jpg",
        "sticker": "webp",
        "video": "mp4",
        "animation": "mp4",
        "video_note": "mp4",
        "voice": "ogg",
    }
)
FALLBACK_EXTENSION: Final[str] = "dat"
FALLBACK_CONTENT_TYPE: Final[str] = "application/octet-stream"

__all__ = [
    "DEFAULT_EXTENSIONS",
    "FALLBACK_EXTENSION",
    "default_filename",
    "guess_content_type",
    "resolve_media",
]


def default_filename(name: str) -> str:
    """Return ``<name>.<ext>`` using the per-field extension table."""

    return f"{name}.{DEFAULT_EXTENSIONS.get(name, FALLBACK_EXTENSION)}"


def guess_content_type(filename: str) -> str:
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or FALLBACK_CONTENT_TYPE


def _closing(handle: IO[bytes]) -> Callable[[], Awaitable[None]]:
    async def _close() -> None:
        await asyncio.to_thread(handle.close)

    return _close


async def _open_path(source: str | os.PathLike[str]) -> IO[bytes]:
    path = Path(source)
    resolved = await asyncio.to_thread(path.resolve)
    try:
        info = await asyncio.to_thread(resolved.stat)
    except FileNotFoundError as exc:
        raise InvalidAttachmentSource(f"Unable to upload '{path}', not a file") from exc
    if not stat.S_ISREG(info.st_mode):
        raise InvalidAttachmentSource(f"Unable to upload '{path}', not a file")
    return await asyncio.to_thread(resolved.open, "rb")


async def _fetch_url(client: httpx.AsyncClient, url: str, name: str, timeout: float) -> httpx.Response:
    request = client.build_request("GET", url, timeout=timeout)
    try:
        response = await client.send(request, stream=True, follow_redirects=True)
    except httpx.HTTPError as exc:
        raise AttachmentFetchError(f"Unable to fetch attachment '{name}': {exc}") from exc
    if not response.is_success:
        await response.aclose()
        raise AttachmentFetchError(
            f"Unable to fetch attachment '{name}': HTTP {response.status_code}"
        )
    return response


async def resolve_media(
    form: MultipartStream,
    media: InputFile,
    name: str,
    client: httpx.AsyncClient,
    *,
    timeout: float = ATTACHMENT_TIMEOUT_SECONDS,
) -> None:
    """
    Append *media* to *form* as a binary part called *name*.

    Parameters:
        form (MultipartStream): Body under construction.
        media (InputFile): Attachment reference to resolve.
        name (str): Field name or attachment id the part is addressed by.
        client (httpx.AsyncClient): Client used for ``url`` attachments.
        timeout (float): Bound for the remote fetch, in seconds.

    Raises:
        InvalidAttachmentSource: If a path source is missing or not a regular file,
            or the source type cannot be streamed.
        AttachmentFetchError: If a ``url`` attachment cannot be fetched.
        OSError: For any other filesystem failure.
    """

    filename = media.filename or default_filename(name)

    if media.url:
        logger.debug("Fetching attachment %s from %s", name, redact_url_for_logs(media.url))
        response = await _fetch_url(client, media.url, name, timeout)
        form.add_part(
            MultipartPart(
                name,
                response.aiter_bytes(),
                filename=filename,
                content_type=guess_content_type(filename),
                closer=response.aclose,
            )
        )
        return

    source = media.source
    if not source:
        return

    if media.is_path:
        handle = await _open_path(source)  # type: ignore[arg-type]
        filename = media.filename or Path(source).name  # type: ignore[arg-type]
        logger.debug("Attaching %s from local file %s", name, filename)
        form.add_part(
            MultipartPart(
                name,
                handle,
                filename=filename,
                content_type=guess_content_type(filename),
                closer=_closing(handle),
            )
        )
        return

    if isinstance(source, (bytes, bytearray, memoryview, AsyncIterable)) or hasattr(source, "read"):
        form.add_part(
            MultipartPart(name, source, filename=filename, content_type=guess_content_type(filename))
        )
        return

    raise InvalidAttachmentSource(
        f"Unable to upload '{name}', unsupported source type {type(source).__name__}"
    )
