"""Configuration dataclasses for the bot API client."""
from dataclasses import dataclass, field
from enum import Enum


class ApiMode(str, Enum):
    """Path prefix selecting bot or user accounts on the API server."""

    BOT = "bot"
    USER = "user"


@dataclass
class ClientConfig:
    """Endpoint layout, webhook behaviour, and transport timeouts."""

    api_root: str = "https://api.telegram.org"
    api_mode: ApiMode = ApiMode.BOT
    webhook_reply: bool = True
    test_env: bool = False
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float = 500.0
    attachment_timeout_seconds: float = 500.0
    keepalive_expiry_seconds: float = 10.0


@dataclass
class AppConfig:
    """Top-level configuration container."""

    client: ClientConfig = field(default_factory=ClientConfig)
