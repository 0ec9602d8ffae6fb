"""CLI entry point for issuing and dry-running bot API calls."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, Mapping, NoReturn, Optional, cast

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from src.botcall import (
    ApiClient,
    ApiError,
    BotCallError,
    InputFile,
    InvalidAttachmentSource,
    RequestConfig,
    includes_media,
)
from src.botcall.multipart import MultipartStream
from src.botcall.net import redact_token
from src.config_loader import ConfigError, apply_env_overrides, load_config
from src.datatypes import AppConfig

__all__ = [
    "main",
    "run_call",
    "run_encode",
    "describe_request",
    "parse_params",
    "CLIAppError",
    "ApiClient",
    "ApiError",
    "InputFile",
    "InvalidAttachmentSource",
    "includes_media",
]

TOKEN_ENV_VAR = "BOTCALL_TOKEN"

_stderr = Console(stderr=True)


class CLIAppError(RuntimeError):
    """Raised when the CLI cannot complete its work; messages never carry the bot token."""

    def __init__(self, message: str, *, code: int = 1, rich_message: Optional[str] = None) -> None:
        message = redact_token(message)
        super().__init__(message)
        self.code = code
        self.rich_message = rich_message or f"[red]Error:[/red] {escape(message)}"


def _exit_with(exc: CLIAppError) -> NoReturn:
    _stderr.print(exc.rich_message, soft_wrap=True)
    raise click.exceptions.Exit(exc.code) from exc


def _split_assignment(raw: str, option: str) -> tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise click.BadParameter(f"expected key=value, got {raw!r}", param_hint=option)
    return key.strip(), value


def parse_params(
    params: Iterable[str] = (),
    files: Iterable[str] = (),
    urls: Iterable[str] = (),
) -> Dict[str, Any]:
    """
    Build a call payload from ``key=value`` command-line assignments.

    ``--param`` values are decoded as JSON when possible and kept as strings
    otherwise; ``--file`` and ``--url`` values become attachment references.
    """

    payload: Dict[str, Any] = {}
    for raw in params:
        key, value = _split_assignment(raw, "--param")
        try:
            payload[key] = json.loads(value)
        except ValueError:
            payload[key] = value
    for raw in files:
        key, value = _split_assignment(raw, "--file")
        payload[key] = InputFile(source=value)
    for raw in urls:
        key, value = _split_assignment(raw, "--url")
        payload[key] = InputFile(url=value)
    return payload


def describe_request(config: RequestConfig) -> Dict[str, Any]:
    """Return a JSON-friendly summary of an encoded request."""

    summary: Dict[str, Any] = {"mode": config.mode, "headers": dict(config.headers)}
    if isinstance(config.body, MultipartStream):
        parts = []
        for part in config.body.parts:
            entry: Dict[str, Any] = {"name": part.name}
            if part.filename is not None:
                entry["filename"] = part.filename
                entry["content_type"] = part.content_type
            elif isinstance(part.body, str):
                entry["value"] = part.body
            parts.append(entry)
        summary["parts"] = parts
    else:
        summary["body"] = json.loads(config.body.decode("utf-8"))
    return summary


def _dry_run_transport(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"")


async def run_encode(payload: Mapping[str, Any], app: AppConfig) -> Dict[str, Any]:
    """Encode *payload* locally; remote URL attachments are listed but not fetched."""

    async with httpx.AsyncClient(transport=httpx.MockTransport(_dry_run_transport)) as offline:
        client = ApiClient("", app.client, http_client=offline)
        config = await client.encode(payload)
        try:
            return describe_request(config)
        finally:
            if isinstance(config.body, MultipartStream):
                await config.body.aclose()


async def run_call(token: str, method: str, payload: Mapping[str, Any], app: AppConfig) -> Any:
    async with ApiClient(token, app.client) as client:
        return await client.call_api(method, payload)


def _configure_logging(verbose: bool, no_color: bool) -> None:
    console = Console(stderr=True, no_color=no_color)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # httpx logs full request URLs at INFO, which include the token.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_app_config(config_path: Optional[str]) -> AppConfig:
    try:
        app = load_config(config_path) if config_path else AppConfig()
        return apply_env_overrides(app)
    except FileNotFoundError as exc:
        raise CLIAppError(f"Config file not found: {exc.filename}") from exc
    except ConfigError as exc:
        raise CLIAppError(f"Config parsing failed: {exc}") from exc


def _emit_json(value: Any, pretty: bool) -> None:
    if pretty:
        click.echo(json.dumps(value, indent=2, ensure_ascii=False))
    else:
        click.echo(json.dumps(value, separators=(",", ":"), ensure_ascii=False))


def _execute_call(options: Mapping[str, Any], method: str, payload: Mapping[str, Any]) -> Any:
    token = options.get("token")
    if not token:
        raise CLIAppError(f"A bot token is required (--token or {TOKEN_ENV_VAR}).")
    app = _load_app_config(options.get("config_path"))
    try:
        return asyncio.run(run_call(token, method, payload, app))
    except (BotCallError, httpx.HTTPError, OSError) as exc:
        raise CLIAppError(str(exc)) from exc


def _execute_encode(options: Mapping[str, Any], payload: Mapping[str, Any]) -> Dict[str, Any]:
    app = _load_app_config(options.get("config_path"))
    try:
        return asyncio.run(run_encode(payload, app))
    except (BotCallError, OSError) as exc:
        raise CLIAppError(str(exc)) from exc


_param_options = [
    click.option("-p", "--param", "params", multiple=True, help="Call parameter as key=value (JSON values accepted)."),
    click.option("-f", "--file", "files", multiple=True, help="Attach a local file as field=path."),
    click.option("-u", "--url", "urls", multiple=True, help="Attach a remote file as field=url."),
    click.option("--json-pretty", is_flag=True, help="Pretty-print the JSON output."),
]


def _with_param_options(func):
    for option in reversed(_param_options):
        func = option(func)
    return func


@click.group()
@click.option("--config", "config_path", default=None, help="Path to a TOML file with a [client] table.")
@click.option("--token", default=None, envvar=TOKEN_ENV_VAR, help=f"Bot token. Defaults to {TOKEN_ENV_VAR}.")
@click.option("--verbose", is_flag=True, help="Show debug logging for encoding and dispatch.")
@click.option("--no-color", is_flag=True, help="Disable ANSI colour output.")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    token: Optional[str],
    verbose: bool,
    no_color: bool,
) -> None:
    """Issue RPC-style bot API calls with automatic JSON/multipart encoding."""

    _configure_logging(verbose, no_color)
    params_map = cast(Dict[str, Any], ctx.ensure_object(dict))
    params_map.update({"config_path": config_path, "token": token})


@main.command("call")
@click.argument("method")
@_with_param_options
@click.pass_context
def call_command(
    ctx: click.Context,
    method: str,
    params: tuple[str, ...],
    files: tuple[str, ...],
    urls: tuple[str, ...],
    json_pretty: bool,
) -> None:
    """Perform METHOD and print the API result as JSON."""

    options = cast(Dict[str, Any], ctx.ensure_object(dict))
    payload = parse_params(params, files, urls)
    try:
        result = _execute_call(options, method, payload)
    except CLIAppError as exc:
        _exit_with(exc)
    _emit_json(result, json_pretty)


@main.command("encode")
@click.argument("method")
@_with_param_options
@click.pass_context
def encode_command(
    ctx: click.Context,
    method: str,
    params: tuple[str, ...],
    files: tuple[str, ...],
    urls: tuple[str, ...],
    json_pretty: bool,
) -> None:
    """Show how METHOD would be encoded without contacting the API."""

    options = cast(Dict[str, Any], ctx.ensure_object(dict))
    payload = parse_params(params, files, urls)
    try:
        summary = _execute_encode(options, payload)
    except CLIAppError as exc:
        _exit_with(exc)
    _stderr.print(f"[bold]{method}[/bold] encodes as [cyan]{summary['mode']}[/cyan]")
    _emit_json(summary, json_pretty)


if __name__ == "__main__":
    main()
