"""Pantry client CLI.

Usage:
    pantry-client register "my project" --perm session --perm view_llms
    pantry-client llms --running                  # needs PANTRY_USER_ID / PANTRY_API_KEY
    pantry-client request-status <request-id>
    pantry-client prompt "About me: " --param temperature=0.7

Connection settings come from --socket-path / --base-url or the
PANTRY_SOCKET_PATH / PANTRY_BASE_URL environment variables.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from .api import PantryAPI
from .client import PantryClient
from .config import ENV_BASE_URL, ENV_SOCKET_PATH, ClientConfig
from .errors import PantryError
from .events import PromptCompletion, PromptError, PromptProgress
from .models import LLMStatus, UserPermissions

T = TypeVar("T")

FORMAT_TABLE = "table"
FORMAT_JSON = "json"

PERMISSION_NAMES = [name.removeprefix("perm_") for name in UserPermissions.model_fields]

format_option = click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)


def identity_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    fn = click.option(
        "--api-key", envvar="PANTRY_API_KEY", required=True, help="API key from registration"
    )(fn)
    fn = click.option(
        "--user-id", envvar="PANTRY_USER_ID", type=click.UUID, required=True, help="User UUID"
    )(fn)
    return fn


def truncate(text: str | None, max_len: int = 40) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def parse_param(value: str) -> tuple[str, Any]:
    """Parse key=value, decoding the value as JSON when possible."""
    key, sep, raw = value.partition("=")
    if not sep or not key:
        raise click.BadParameter(f"Expected key=value, got {value!r}")
    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw


def _run(config: ClientConfig, fn: Callable[[PantryAPI], Awaitable[T]]) -> T:
    """Run `fn` against a fresh API, closing it afterwards."""

    async def runner() -> T:
        api = PantryAPI.from_config(config)
        try:
            return await fn(api)
        finally:
            await api.aclose()

    try:
        return asyncio.run(runner())
    except PantryError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("--socket-path", envvar=ENV_SOCKET_PATH, help="Local Pantry socket")
@click.option("--base-url", envvar=ENV_BASE_URL, help="Network Pantry endpoint")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, socket_path: str | None, base_url: str | None, verbose: bool) -> None:
    """Talk to a local Pantry LLM server."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = ClientConfig.from_env(socket_path=socket_path, base_url=base_url)


@main.command()
@click.argument("name")
@click.option(
    "--perm",
    "perms",
    multiple=True,
    type=click.Choice(PERMISSION_NAMES),
    help="Permission to request (repeatable)",
)
@format_option
@click.pass_obj
def register(config: ClientConfig, name: str, perms: tuple[str, ...], output_format: str) -> None:
    """Register a new API user and request permissions.

    The permission request must be accepted in the Pantry UI.
    """
    permissions = UserPermissions(**{f"perm_{p}": True for p in perms})

    async def go(api: PantryAPI) -> tuple[PantryClient, Any]:
        return await PantryClient.register(name, permissions, api=api)

    client, status = _run(config, go)

    if output_format == FORMAT_JSON:
        click.echo(
            json.dumps(
                {
                    "user_id": str(client.user_id),
                    "api_key": client.api_key,
                    "request": status.model_dump(mode="json"),
                },
                indent=2,
            )
        )
        return

    click.echo(f"User ID: {client.user_id}")
    click.echo(f"API key: {client.api_key}")
    click.echo(f"Request: {status.id} (accepted={status.accepted}, complete={status.complete})")


@main.command()
@identity_options
@click.option("--running", is_flag=True, help="Only LLMs that are currently loaded")
@format_option
@click.pass_obj
def llms(
    config: ClientConfig, user_id: uuid.UUID, api_key: str, running: bool, output_format: str
) -> None:
    """List downloaded (or running) LLMs."""

    async def go(api: PantryAPI) -> list[LLMStatus]:
        client = PantryClient(user_id, api_key, api)
        return await (client.get_running_llms() if running else client.get_available_llms())

    statuses = _run(config, go)

    if output_format == FORMAT_JSON:
        click.echo(json.dumps([s.model_dump(mode="json") for s in statuses], indent=2))
        return

    if not statuses:
        click.echo("No LLMs found.")
        return

    click.echo(f"{'UUID':<36}  {'ID':<24} {'Family':<12} {'Local':<5} {'Running':<7}")
    click.echo("-" * 90)
    for s in statuses:
        click.echo(
            f"{s.uuid:<36}  {truncate(s.id, 24):<24} {truncate(s.family_id, 12):<12} "
            f"{'yes' if s.local else 'no':<5} {'yes' if s.running else 'no':<7}"
        )
    click.echo(f"\nTotal: {len(statuses)} LLM(s)")


@main.command("request-status")
@click.argument("request_id", type=click.UUID)
@identity_options
@click.pass_obj
def request_status(
    config: ClientConfig, request_id: uuid.UUID, user_id: uuid.UUID, api_key: str
) -> None:
    """Show the state of a permission/download/load request."""

    async def go(api: PantryAPI) -> Any:
        return await PantryClient(user_id, api_key, api).get_request_status(request_id)

    status = _run(config, go)
    click.echo(json.dumps(status.model_dump(mode="json"), indent=2))


@main.command()
@click.argument("prompt")
@identity_options
@click.option("--llm-id", type=click.UUID, help="Use this running LLM instead of the best one")
@click.option("--param", "params", multiple=True, help="Inference parameter key=value (repeatable)")
@click.pass_obj
def prompt(
    config: ClientConfig,
    prompt: str,
    user_id: uuid.UUID,
    api_key: str,
    llm_id: uuid.UUID | None,
    params: tuple[str, ...],
) -> None:
    """Create a session and stream the LLM's answer to stdout."""
    parameters = dict(parse_param(p) for p in params)

    async def go(api: PantryAPI) -> str | None:
        client = PantryClient(user_id, api_key, api)
        if llm_id is not None:
            session = await client.create_session_id(llm_id)
        else:
            session = await client.create_session()

        error = None
        async with await session.prompt_session(prompt, parameters) as stream:
            async for event in stream:
                kind = event.event
                if isinstance(kind, PromptProgress):
                    click.echo(kind.next, nl=False)
                elif isinstance(kind, PromptCompletion):
                    break
                elif isinstance(kind, PromptError):
                    error = kind.message
                    break
        click.echo()
        return error

    error = _run(config, go)
    if error is not None:
        raise click.ClickException(f"Inference failed: {error}")
