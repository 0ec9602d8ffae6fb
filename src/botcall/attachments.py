"""Rewrite one parameter value into multipart parts, hoisting attachments out-of-line."""

from __future__ import annotations

import asyncio
import secrets
from collections.abc import Awaitable, Iterable, Mapping
from typing import Any, Final, TypeVar

import httpx

from src.botcall.media import resolve_media
from src.botcall.net import ATTACHMENT_TIMEOUT_SECONDS
from src.botcall.multipart import MultipartPart, MultipartStream
from src.botcall.params import (
    InputFile,
    InputMedia,
    MediaGroup,
    ParameterValue,
    Scalar,
    Structure,
    Thumbnail,
    coerce_input_file,
    dump_json,
    thumbnail_of,
)

__all__ = [
    "ATTACH_SCHEME",
    "attach_form_value",
    "attachment_ref",
    "gather_all",
    "new_attachment_id",
]

ATTACH_SCHEME: Final[str] = "attach://"

_T = TypeVar("_T")


def new_attachment_id() -> str:
    return secrets.token_hex(16)


def attachment_ref(attachment_id: str) -> str:
    return f"{ATTACH_SCHEME}{attachment_id}"


async def gather_all(aws: Iterable[Awaitable[_T]]) -> list[_T]:
    """Await every awaitable, then raise the first failure if any occurred.

    Unlike a bare ``asyncio.gather`` this never leaves siblings running after
    an error, so callers can safely clean up shared state afterwards.
    """

    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


async def _attach_as_reference(
    form: MultipartStream,
    media: InputFile,
    client: httpx.AsyncClient,
    timeout: float,
) -> str:
    attachment_id = new_attachment_id()
    await resolve_media(form, media, attachment_id, client, timeout=timeout)
    return attachment_ref(attachment_id)


async def _attach_media_item(
    form: MultipartStream,
    item: Any,
    client: httpx.AsyncClient,
    timeout: float,
) -> Any:
    """Return *item* with its ``media``/``thumbnail`` attachments replaced by references.

    A thumbnail attachment is resolved even when ``media`` is already a file id.
    """

    if not isinstance(item, Mapping):
        return item
    media = coerce_input_file(item.get("media"))
    if media is not None and media.is_empty:
        media = None
    thumb = coerce_input_file(thumbnail_of(item))
    if thumb is not None and thumb.is_empty:
        thumb = None
    if media is None and thumb is None:
        return item

    resolved = {key: value for key, value in item.items() if key != "thumb"}
    if media is not None:
        resolved["media"] = await _attach_as_reference(form, media, client, timeout)
    if thumb is not None:
        resolved["thumbnail"] = await _attach_as_reference(form, thumb, client, timeout)
    elif "thumb" in item:
        resolved["thumb"] = item["thumb"]
    return resolved


async def attach_form_value(
    form: MultipartStream,
    name: str,
    value: ParameterValue | None,
    client: httpx.AsyncClient,
    *,
    timeout: float = ATTACHMENT_TIMEOUT_SECONDS,
) -> None:
    """Append the parts encoding field *name* to *form*."""

    if value is None:
        return
    if isinstance(value, Scalar):
        form.add_part(MultipartPart(name, value.render()))
    elif isinstance(value, Thumbnail):
        reference = await _attach_as_reference(form, value.file, client, timeout)
        form.add_part(MultipartPart(name, reference))
    elif isinstance(value, MediaGroup):
        items = await gather_all(_attach_media_item(form, item, client, timeout) for item in value.items)
        form.add_part(MultipartPart(name, dump_json(items)))
    elif isinstance(value, InputMedia):
        resolved = await _attach_media_item(form, value.fields, client, timeout)
        form.add_part(MultipartPart(name, dump_json(resolved)))
    elif isinstance(value, InputFile):
        await resolve_media(form, value, name, client, timeout=timeout)
    elif isinstance(value, Structure):
        form.add_part(MultipartPart(name, dump_json(value.value)))
    else:
        raise TypeError(f"Unsupported parameter value for '{name}': {type(value).__name__}")
