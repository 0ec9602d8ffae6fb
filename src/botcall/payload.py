"""Choose between JSON and multipart encoding for one call and build the body."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Final, Literal

import httpx

from src.botcall.attachments import attach_form_value, gather_all
from src.botcall.multipart import MultipartStream
from src.botcall.net import ATTACHMENT_TIMEOUT_SECONDS
from src.botcall.params import (
    LINK_PREVIEW_FIELD,
    classify_value,
    dump_json,
    is_attachment,
    stringify_json_fields,
    thumbnail_of,
)

logger = logging.getLogger(__name__)

__all__ = [
    "EncodingMode",
    "RequestConfig",
    "build_form_data_config",
    "build_json_config",
    "build_request_config",
    "includes_media",
]

EncodingMode = Literal["json", "multipart"]

_BASE_HEADERS: Final[Mapping[str, str]] = {"connection": "keep-alive"}


@dataclass(frozen=True, slots=True)
class RequestConfig:
    """Transmission-ready request: headers plus a ``bytes`` or streaming body."""

    headers: Mapping[str, str]
    body: bytes | MultipartStream
    mode: EncodingMode
    method: str = field(default="POST")

    @property
    def content_type(self) -> str:
        return self.headers["content-type"]


def _item_carries_media(item: Any) -> bool:
    if not isinstance(item, Mapping):
        return False
    return is_attachment(item.get("media")) or is_attachment(thumbnail_of(item))


def _carries_media(value: Any) -> bool:
    if is_attachment(value):
        return True
    if not isinstance(value, Mapping) or value.get("media") is None:
        return False
    return _item_carries_media(value)


def includes_media(payload: Mapping[str, Any]) -> bool:
    """Return ``True`` when any field of *payload* holds an attachment.

    Attachments are recognised directly, under the ``media`` or
    ``thumbnail``/``thumb`` keys of a media object, or under those keys of
    any sequence item. ``link_preview_options`` is never scanned.
    """

    for key, value in payload.items():
        if key == LINK_PREVIEW_FIELD or value is None:
            continue
        if isinstance(value, (list, tuple)):
            if any(_item_carries_media(item) for item in value):
                return True
        elif _carries_media(value):
            return True
    return False


def build_json_config(payload: Mapping[str, Any]) -> RequestConfig:
    headers = {"content-type": "application/json", **_BASE_HEADERS}
    return RequestConfig(headers=headers, body=dump_json(payload).encode("utf-8"), mode="json")


async def build_form_data_config(
    payload: Mapping[str, Any],
    client: httpx.AsyncClient,
    *,
    boundary: str | None = None,
    attachment_timeout: float = ATTACHMENT_TIMEOUT_SECONDS,
) -> RequestConfig:
    """
    Build a multipart body for *payload*, resolving every attachment.

    All fields resolve concurrently. If any resolution fails the resources
    opened so far are released and the error propagates; no body is
    returned.
    """

    form = MultipartStream(boundary)
    try:
        await gather_all(
            attach_form_value(form, key, classify_value(key, value), client, timeout=attachment_timeout)
            for key, value in payload.items()
        )
    except BaseException:
        await form.aclose()
        raise
    headers = {"content-type": form.content_type, **_BASE_HEADERS}
    return RequestConfig(headers=headers, body=form, mode="multipart")


async def build_request_config(
    payload: Mapping[str, Any],
    client: httpx.AsyncClient,
    *,
    attachment_timeout: float = ATTACHMENT_TIMEOUT_SECONDS,
) -> RequestConfig:
    """Return the encoded request for *payload*, choosing the encoding by content."""

    prepared = stringify_json_fields(payload)
    if includes_media(prepared):
        logger.debug("Encoding %d field(s) as multipart", len(prepared))
        return await build_form_data_config(prepared, client, attachment_timeout=attachment_timeout)
    logger.debug("Encoding %d field(s) as JSON", len(prepared))
    return build_json_config(prepared)
