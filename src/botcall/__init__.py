"""Request-body encoding and dispatch for RPC-style bot API calls."""

from __future__ import annotations

from .client import ApiClient
from .dispatch import ResponseSink, StreamWriterSink, reply_to_webhook, send_outbound
from .errors import ApiError, AttachmentFetchError, BotCallError, InvalidAttachmentSource
from .params import InputFile
from .payload import RequestConfig, build_request_config, includes_media

__all__ = [
    "ApiClient",
    "ApiError",
    "AttachmentFetchError",
    "BotCallError",
    "InputFile",
    "InvalidAttachmentSource",
    "RequestConfig",
    "ResponseSink",
    "StreamWriterSink",
    "build_request_config",
    "includes_media",
    "reply_to_webhook",
    "send_outbound",
]
