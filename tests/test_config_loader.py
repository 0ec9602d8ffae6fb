from __future__ import annotations

from pathlib import Path

import pytest

from src.config_loader import ConfigError, _sanitize_section, apply_env_overrides, load_config
from src.datatypes import ApiMode, AppConfig, ClientConfig


def _write_config(tmp_path: Path, text: str, *, bom: bool = False) -> str:
    path = tmp_path / "botcall.toml"
    data = text.encode("utf-8")
    if bom:
        data = b"\xef\xbb\xbf" + data
    path.write_bytes(data)
    return str(path)


def test_load_config_reads_client_table(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        """
[client]
api_root = "http://localhost:8081/"
api_mode = "USER"
webhook_reply = "no"
test_env = 1
read_timeout_seconds = 30
""",
    )

    app = load_config(path)

    client = app.client
    assert client.api_root == "http://localhost:8081"
    assert client.api_mode is ApiMode.USER
    assert client.webhook_reply is False
    assert client.test_env is True
    assert client.read_timeout_seconds == 30.0
    assert isinstance(client.read_timeout_seconds, float)
    assert client.connect_timeout_seconds == 10.0


def test_load_config_defaults_without_client_table(tmp_path: Path) -> None:
    app = load_config(_write_config(tmp_path, "# empty\n"))

    assert app.client == ClientConfig()


def test_load_config_accepts_utf8_bom(tmp_path: Path) -> None:
    path = _write_config(tmp_path, '[client]\napi_mode = "bot"\n', bom=True)

    assert load_config(path).client.api_mode is ApiMode.BOT


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ('[client]\napi_mode = "robot"\n', "api_mode"),
        ('[client]\napi_root = "ftp://example.com"\n', "api_root"),
        ("[client]\nread_timeout_seconds = 0\n", "read_timeout_seconds must be > 0"),
        ('[client]\nconnect_timeout_seconds = "fast"\n', "connect_timeout_seconds must be a number"),
        ('[client]\nwebhook_reply = "maybe"\n', "client.webhook_reply must be a boolean"),
        ("[client]\nunknown_key = 1\n", "Invalid keys in [client]"),
        ("client = 3\n", "[client] must be a table"),
        ("[client\n", "Failed to parse TOML"),
    ],
)
def test_load_config_rejects_invalid_values(tmp_path: Path, text: str, message: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_config(_write_config(tmp_path, text))

    assert message in str(excinfo.value)


def test_load_config_refuses_token_in_file(tmp_path: Path) -> None:
    path = _write_config(tmp_path, '[client]\ntoken = "123:ABC"\n')

    with pytest.raises(ConfigError, match="BOTCALL_TOKEN"):
        load_config(path)


def test_load_config_rejects_non_utf8(tmp_path: Path) -> None:
    path = tmp_path / "latin.toml"
    path.write_bytes(b'[client]\napi_root = "http://caf\xe9"\n')

    with pytest.raises(ConfigError, match="UTF-8"):
        load_config(str(path))


def test_sanitize_section_coerces_bool_fields_only() -> None:
    client = _sanitize_section({"webhook_reply": "off", "api_root": "https://x"}, "client", ClientConfig)

    assert client.webhook_reply is False
    assert client.api_root == "https://x"


def test_env_overrides_apply_on_top_of_file_values() -> None:
    app = AppConfig(ClientConfig(api_root="https://file.example.com", webhook_reply=True))
    environ = {
        "BOTCALL_API_ROOT": "https://env.example.com/",
        "BOTCALL_API_MODE": "user",
        "BOTCALL_WEBHOOK_REPLY": "false",
        "BOTCALL_TEST_ENV": "yes",
        "BOTCALL_TOKEN": "ignored-here",
    }

    result = apply_env_overrides(app, environ)

    assert result is app
    assert app.client.api_root == "https://env.example.com"
    assert app.client.api_mode is ApiMode.USER
    assert app.client.webhook_reply is False
    assert app.client.test_env is True


def test_env_overrides_validate_values() -> None:
    with pytest.raises(ConfigError, match="BOTCALL_TEST_ENV"):
        apply_env_overrides(AppConfig(), {"BOTCALL_TEST_ENV": "sometimes"})


def test_env_overrides_read_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOTCALL_API_MODE", "USER")

    app = apply_env_overrides(AppConfig())

    assert app.client.api_mode is ApiMode.USER
