"""Configuration loader that parses and validates user-provided TOML."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import fields
from typing import Any, Dict, Final
from urllib.parse import urlsplit

from .datatypes import ApiMode, AppConfig, ClientConfig

ENV_PREFIX: Final[str] = "BOTCALL_"
_ENV_KEYS: Final[tuple[str, ...]] = ("api_root", "api_mode", "webhook_reply", "test_env")
_TIMEOUT_KEYS: Final[tuple[str, ...]] = (
    "connect_timeout_seconds",
    "read_timeout_seconds",
    "attachment_timeout_seconds",
    "keepalive_expiry_seconds",
)


class ConfigError(ValueError):
    """Raised when the configuration file is malformed or fails validation."""


def _coerce_bool(value: Any, dotted_key: str) -> bool:
    """Return a bool, coercing simple 0/1 and yes/no representations when necessary."""

    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"{dotted_key} must be a boolean (use true/false).")


def _sanitize_section(raw: Any, name: str, cls):
    """
    Coerce a raw TOML table into an instance of ``cls`` with cleaned booleans.

    Parameters:
        raw (Any): Raw TOML section data.
        name (str): Section name used when reporting validation errors.
        cls: Dataclass type used to construct the section object.

    Returns:
        Any: Instantiated dataclass populated with values from ``raw``.

    Raises:
        ConfigError: If the section is not a table or contains invalid keys or values.
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"[{name}] must be a table")
    cleaned: Dict[str, Any] = {}
    bool_fields = {field.name for field in fields(cls) if field.type is bool}
    for key, value in raw.items():
        if key in bool_fields:
            cleaned[key] = _coerce_bool(value, f"{name}.{key}")
        else:
            cleaned[key] = value
    try:
        return cls(**cleaned)
    except TypeError as exc:
        raise ConfigError(f"Invalid keys in [{name}]: {exc}") from exc


def _validate_client(client: ClientConfig) -> None:
    """
    Normalise and validate the ``[client]`` section in place.

    Raises:
        ConfigError: If the API root is not an http(s) URL, the mode is unknown,
            or a timeout is not positive.
    """
    api_root = str(client.api_root).strip()
    parsed = urlsplit(api_root)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigError("client.api_root must be an http(s) URL")
    client.api_root = api_root.rstrip("/")

    try:
        client.api_mode = ApiMode(str(getattr(client.api_mode, "value", client.api_mode)).strip().lower())
    except ValueError as exc:
        raise ConfigError("client.api_mode must be 'bot' or 'user'") from exc

    for key in _TIMEOUT_KEYS:
        value = getattr(client, key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"client.{key} must be a number")
        if value <= 0:
            raise ConfigError(f"client.{key} must be > 0")
        setattr(client, key, float(value))


def apply_env_overrides(app: AppConfig, environ: Mapping[str, str] | None = None) -> AppConfig:
    """
    Overlay ``BOTCALL_*`` environment variables onto *app* and re-validate.

    Recognised variables: ``BOTCALL_API_ROOT``, ``BOTCALL_API_MODE``,
    ``BOTCALL_WEBHOOK_REPLY`` and ``BOTCALL_TEST_ENV``.
    """
    env = os.environ if environ is None else environ
    for key in _ENV_KEYS:
        raw = env.get(f"{ENV_PREFIX}{key.upper()}")
        if raw is None:
            continue
        if key in {"webhook_reply", "test_env"}:
            setattr(app.client, key, _coerce_bool(raw, f"{ENV_PREFIX}{key.upper()}"))
        else:
            setattr(app.client, key, raw)
    _validate_client(app.client)
    return app


def load_config(path: str) -> AppConfig:
    """
    Load and validate an application configuration from a TOML file.

    Reads the file at `path`, parses it as UTF-8 TOML (BOM is accepted) and validates the
    `[client]` table. The bot token is never read from the file.

    Returns:
        AppConfig: The validated configuration.

    Raises:
        ConfigError: If the file is not UTF-8, TOML parsing fails, or any validation rule is violated.
    """

    with open(path, "rb") as handle:
        raw_bytes = handle.read()
    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        raw_bytes = raw_bytes[3:]
    try:
        raw = tomllib.loads(raw_bytes.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ConfigError("Configuration file must be UTF-8 encoded") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse TOML: {exc}") from exc

    client_raw = raw.get("client", {})
    if isinstance(client_raw, dict) and "token" in client_raw:
        raise ConfigError("client.token must not be stored in the config file; use BOTCALL_TOKEN")

    app = AppConfig(client=_sanitize_section(client_raw, "client", ClientConfig))
    _validate_client(app.client)
    return app
