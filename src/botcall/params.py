"""Parameter model: tagged value variants and the normalising pre-pass.

Callers hand ``ApiClient.call_api`` plain mappings. Before any encoding runs,
every value is classified into one of a closed set of variants so the
encoder branches on types instead of probing shapes:

``Scalar``
    str/bool/int/float, sent as text.
``InputFile``
    one attachment (path, buffer, stream or remote URL).
``Thumbnail``
    value of a ``thumb``/``thumbnail`` field, always uploaded as an attachment.
``InputMedia``
    mapping with ``media`` and ``type``; ``media`` may be an attachment,
    and so may its ``thumbnail``.
``MediaGroup``
    sequence of items, each of which may carry ``media``/``thumbnail``
    attachments.
``Structure``
    any other mapping, sent as JSON.

``None`` is never classified; nullish values are dropped everywhere.
"""

from __future__ import annotations

import json
import os
from collections.abc import AsyncIterable, Mapping, Sequence
from dataclasses import dataclass
from typing import IO, Any, Final, Union

__all__ = [
    "JSON_FIELDS",
    "LINK_PREVIEW_FIELD",
    "THUMBNAIL_FIELDS",
    "InputFile",
    "InputMedia",
    "MediaGroup",
    "ParameterValue",
    "Scalar",
    "Structure",
    "Thumbnail",
    "classify_value",
    "coerce_input_file",
    "drop_nullish",
    "dump_json",
    "is_attachment",
    "stringify_json_fields",
    "thumbnail_of",
]

JSON_FIELDS: Final[tuple[str, ...]] = (
    "results",
    "reply_markup",
    "mask_position",
    "shipping_options",
    "errors",
)
THUMBNAIL_FIELDS: Final[frozenset[str]] = frozenset({"thumb", "thumbnail"})
LINK_PREVIEW_FIELD: Final[str] = "link_preview_options"

FileSource = Union[str, "os.PathLike[str]", bytes, bytearray, memoryview, IO[bytes], AsyncIterable[bytes]]


@dataclass(frozen=True, slots=True)
class InputFile:
    """Reference to one attachment: a local/in-memory ``source`` or a remote ``url``."""

    source: FileSource | None = None
    url: str | None = None
    filename: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.url and not self.source

    @property
    def is_path(self) -> bool:
        return isinstance(self.source, (str, os.PathLike))


@dataclass(frozen=True, slots=True)
class Scalar:
    value: str | bool | int | float

    def render(self) -> str:
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


@dataclass(frozen=True, slots=True)
class Thumbnail:
    file: InputFile


@dataclass(frozen=True, slots=True)
class InputMedia:
    fields: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class MediaGroup:
    items: tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class Structure:
    value: Any


ParameterValue = Union[Scalar, InputFile, Thumbnail, InputMedia, MediaGroup, Structure]


def coerce_input_file(value: Any) -> InputFile | None:
    """Return an ``InputFile`` for attachment-shaped *value*, else ``None``."""

    if isinstance(value, InputFile):
        return value
    if isinstance(value, Mapping) and ("source" in value or "url" in value):
        return InputFile(
            source=value.get("source"),
            url=value.get("url"),
            filename=value.get("filename"),
        )
    return None


def is_attachment(value: Any) -> bool:
    """Return ``True`` when *value* references a non-empty attachment."""

    ref = coerce_input_file(value)
    return ref is not None and not ref.is_empty


def thumbnail_of(item: Mapping[str, Any]) -> Any:
    """Return the thumbnail of a media item, preferring the legacy ``thumb`` key."""

    thumb = item.get("thumb")
    return item.get("thumbnail") if thumb is None else thumb


def classify_value(name: str, value: Any) -> ParameterValue | None:
    """Map a raw caller value for field *name* onto a ``ParameterValue`` variant."""

    if value is None:
        return None
    if name in THUMBNAIL_FIELDS:
        if isinstance(value, os.PathLike) or (isinstance(value, str) and value):
            return Thumbnail(InputFile(source=value))
        ref = coerce_input_file(value)
        if ref is not None and not ref.is_empty:
            return Thumbnail(ref)
    if isinstance(value, (str, bool, int, float)):
        return Scalar(value)
    if isinstance(value, InputFile):
        return value
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return MediaGroup(tuple(value))
    if isinstance(value, Mapping) and name != LINK_PREVIEW_FIELD:
        media = value.get("media")
        if media is not None and (
            value.get("type") is not None or is_attachment(media) or is_attachment(thumbnail_of(value))
        ):
            return InputMedia(value)
        ref = coerce_input_file(value)
        if ref is not None:
            return ref
    return Structure(value)


def drop_nullish(value: Any) -> Any:
    """Return a copy of *value* without ``None``-valued mapping keys at any depth.

    ``None`` elements of sequences are kept, matching how JSON encoders
    serialise holes in arrays.
    """

    if isinstance(value, Mapping):
        return {key: drop_nullish(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [drop_nullish(item) for item in value]
    return value


def dump_json(value: Any) -> str:
    """Serialise *value* compactly with nullish keys omitted."""

    return json.dumps(drop_nullish(value), ensure_ascii=False, separators=(",", ":"))


def stringify_json_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of *payload* whose ``JSON_FIELDS`` values are JSON strings.

    The caller's mapping and nested objects are left untouched.
    """

    prepared = dict(payload)
    for field in JSON_FIELDS:
        value = prepared.get(field)
        if value is not None and not isinstance(value, str):
            prepared[field] = dump_json(value)
    return prepared
