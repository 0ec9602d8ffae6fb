"""Bot API client: encode a call, then answer it via webhook or send it outbound."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import TracebackType
from typing import Any

import httpx

from src.botcall.dispatch import ResponseSink, reply_to_webhook, send_outbound
from src.botcall.errors import ApiError
from src.botcall.net import build_async_client, build_method_url, redacting_token
from src.botcall.payload import RequestConfig, build_request_config, includes_media
from src.datatypes import ClientConfig

logger = logging.getLogger(__name__)

__all__ = ["ApiClient"]


def _decode_envelope(method: str, response: httpx.Response) -> Any:
    """Return ``result`` from an API envelope or raise ``ApiError``."""

    try:
        data = response.json()
    except ValueError:
        raise ApiError(
            method,
            response.status_code,
            f"Unexpected non-JSON response: {response.text[:200]!r}",
        ) from None
    if not isinstance(data, Mapping):
        raise ApiError(method, response.status_code, "Unexpected response envelope")
    if data.get("ok"):
        return data.get("result")
    raise ApiError(
        method,
        int(data.get("error_code") or response.status_code),
        str(data.get("description") or "Unknown error"),
        data.get("parameters"),
    )


class ApiClient:
    """
    Issue RPC-style calls against the bot API.

    ``call_api`` accepts arbitrary parameter mappings. Attachment-free calls
    go out as JSON; calls carrying files, buffers, streams or URLs go out as
    multipart bodies. When an inbound webhook response is supplied and still
    open, attachment-free calls are answered on it instead of opening a new
    request.
    """

    def __init__(
        self,
        token: str,
        config: ClientConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        attachment_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._token = token
        self._owns_http_client = http_client is None
        self._http = http_client or build_async_client(
            connect_timeout=self.config.connect_timeout_seconds,
            read_timeout=self.config.read_timeout_seconds,
            keepalive_expiry=self.config.keepalive_expiry_seconds,
        )
        self._attachment_client = attachment_client or self._http

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    def method_url(self, method: str) -> str:
        mode = getattr(self.config.api_mode, "value", self.config.api_mode)
        return build_method_url(
            self.config.api_root,
            str(mode),
            self._token,
            method,
            test_env=self.config.test_env,
        )

    async def encode(self, payload: Mapping[str, Any]) -> RequestConfig:
        """Return the encoded request for *payload* without sending it."""

        return await build_request_config(
            payload,
            self._attachment_client,
            attachment_timeout=self.config.attachment_timeout_seconds,
        )

    def _can_reply_via_webhook(self, response: ResponseSink, payload: Mapping[str, Any]) -> bool:
        if not self.config.webhook_reply or response.headers_sent:
            return False
        if includes_media(payload):
            logger.debug("Webhook reply skipped: payload carries attachments")
            return False
        return True

    async def call_api(
        self,
        method: str,
        payload: Mapping[str, Any] | None = None,
        *,
        response: ResponseSink | None = None,
    ) -> Any:
        """
        Perform *method* with *payload*.

        Parameters:
            method (str): API method name, e.g. ``sendPhoto``.
            payload (Mapping[str, Any] | None): Call parameters; ``None`` values are dropped.
            response (ResponseSink | None): Inbound webhook response to answer on, if any.

        Returns:
            Any: ``True`` for webhook replies, otherwise the API's ``result`` value.

        Raises:
            ApiError: If the API answers with ``ok: false``.
            InvalidAttachmentSource: If a local attachment path is not a regular file.
            AttachmentFetchError: If a remote attachment cannot be fetched.
            httpx.HTTPError: On transport failures; the bot token is redacted from the message.
        """

        params = dict(payload or {})
        if response is not None and self._can_reply_via_webhook(response, params):
            return await reply_to_webhook(response, method, params)

        logger.debug("HTTP call %s", method)
        with redacting_token():
            config = await self.encode(params)
            http_response = await send_outbound(self._http, self.method_url(method), config)
            return _decode_envelope(method, http_response)
