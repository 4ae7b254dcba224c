"""Click CLI for inspecting the DingTalk channel config and session webhooks."""

from __future__ import annotations

import asyncio
import json

import click

from src.dingtalk.config import (
    ResolvedAccount,
    config_from_env,
    load_config_file,
    require_secret,
    resolve_account,
)
from src.dingtalk.errors import DingTalkChannelError
from src.dingtalk.outbound import OutboundDispatcher
from src.dingtalk.session_cache import SessionWebhookCache
from src.dingtalk.sign import sign, signed_url


def _account(ctx: click.Context) -> ResolvedAccount:
    account: ResolvedAccount = ctx.obj["account"]
    try:
        require_secret(account)
    except DingTalkChannelError as exc:
        raise click.ClickException(str(exc)) from exc
    return account


@click.group()
@click.option("--config", "config_path", default=None, help="Host config JSON file (defaults to env).")
@click.option("--account", "account_id", default=None, help="Account id.")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, account_id: str | None) -> None:
    """DingTalk robot channel CLI."""
    ctx.ensure_object(dict)
    try:
        cfg = load_config_file(config_path) if config_path else config_from_env()
        ctx.obj["account"] = resolve_account(cfg, account_id)
    except DingTalkChannelError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command("sign")
@click.pass_context
def sign_command(ctx: click.Context) -> None:
    """Print a fresh timestamp/sign pair for the configured secret."""
    result = sign(_account(ctx).secret_key)
    click.echo(json.dumps({"timestamp": result.timestamp, "sign": result.signature}))


@cli.command("signed-url")
@click.argument("url")
@click.pass_context
def signed_url_command(ctx: click.Context, url: str) -> None:
    """Print URL with timestamp/sign query parameters appended."""
    click.echo(signed_url(url, sign(_account(ctx).secret_key)))


@cli.command()
@click.pass_context
def describe(ctx: click.Context) -> None:
    """Describe the resolved account (the secret is never printed)."""
    account: ResolvedAccount = ctx.obj["account"]
    output = {
        **account.describe(),
        "webhookPath": account.webhook_path,
        "textChunkLimit": account.text_chunk_limit,
        "chunkMode": account.chunk_mode,
    }
    click.echo(json.dumps(output, indent=2, ensure_ascii=False))


@cli.command()
@click.argument("url")
@click.argument("text")
@click.option("--at", "mention_ids", multiple=True, help="User id to @-mention (repeatable).")
@click.pass_context
def send(ctx: click.Context, url: str, text: str, mention_ids: tuple[str, ...]) -> None:
    """Send TEXT as markdown to the session webhook URL."""
    dispatcher = OutboundDispatcher(_account(ctx), SessionWebhookCache())
    try:
        sent = asyncio.run(dispatcher.send(text, url, list(mention_ids) or None))
    except DingTalkChannelError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Sent {sent} chunk(s)")
