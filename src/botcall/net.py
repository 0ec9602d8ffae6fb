# pyright: standard

"""Shared networking helpers: client construction, URL layout and secret redaction."""

from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Final
from urllib.parse import urlsplit

import httpx

__all__ = [
    "ATTACHMENT_TIMEOUT_SECONDS",
    "build_async_client",
    "build_method_url",
    "default_httpx_timeout",
    "redact_exception",
    "redact_token",
    "redact_url_for_logs",
    "redacting_token",
]

ATTACHMENT_TIMEOUT_SECONDS: Final[float] = 500.0

_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"/(bot|user)(\d+):[^/]+/")


def default_httpx_timeout(connect: float = 10.0, read: float = 500.0) -> httpx.Timeout:
    """Return the standard connect/read timeout pair for API clients."""

    return httpx.Timeout(float(read), connect=float(connect))


def build_async_client(
    *,
    connect_timeout: float = 10.0,
    read_timeout: float = 500.0,
    keepalive_expiry: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Return a keep-alive ``httpx.AsyncClient`` with project defaults."""

    limits = httpx.Limits(keepalive_expiry=float(keepalive_expiry))
    return httpx.AsyncClient(
        timeout=default_httpx_timeout(connect_timeout, read_timeout),
        limits=limits,
        transport=transport,
    )


def build_method_url(
    api_root: str,
    api_mode: str,
    token: str,
    method: str,
    *,
    test_env: bool = False,
) -> str:
    """Return ``{api_root}/{mode}{token}/[test/]{method}``."""

    prefix = f"{api_root.rstrip('/')}/{api_mode}{token}"
    if test_env:
        prefix += "/test"
    return f"{prefix}/{method}"


def redact_token(text: str) -> str:
    """Replace the secret half of a ``/bot<id>:<secret>/`` path segment."""

    return _TOKEN_PATTERN.sub(r"/\1\2:[REDACTED]/", text)


def redact_exception(exc: BaseException) -> BaseException:
    """Rewrite string arguments of *exc* in place and return it."""

    exc.args = tuple(redact_token(arg) if isinstance(arg, str) else arg for arg in exc.args)
    if isinstance(exc, OSError):
        for attr in ("strerror", "filename", "filename2"):
            value = getattr(exc, attr, None)
            if isinstance(value, str):
                setattr(exc, attr, redact_token(value))
    return exc


@contextmanager
def redacting_token() -> Iterator[None]:
    """Redact the bot token from any exception escaping the managed block."""

    try:
        yield
    except Exception as exc:
        raise redact_exception(exc)


def redact_url_for_logs(url: str) -> str:
    """Return a safe identifier for URLs when logging sensitive endpoints."""

    try:
        parsed = urlsplit(url)
    except Exception:
        return "url"
    if parsed.netloc:
        return parsed.netloc
    return parsed.path or "url"
