"""Click CLI group: card previews, live sends and event normalization."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, TextIO

import click

from feishu_bridge.channels.feishu.cards import CardOptions, build_card, card_to_dict
from feishu_bridge.channels.feishu.client import FeishuClient
from feishu_bridge.channels.feishu.inbound import InboundMessageNormalizer, normalize_card_action
from feishu_bridge.channels.feishu.media import ByteSource, MediaResolver
from feishu_bridge.channels.feishu.sender import SendRouter, SendState
from feishu_bridge.channels.feishu.targets import TARGET_HINT, classify, looks_like_id
from feishu_bridge.config import get_settings
from feishu_bridge.errors import BridgeError, ChannelError


class _OfflineTransport:
    async def fetch_resource(
        self, message_id: str, file_key: str, resource_type: str
    ) -> ByteSource:
        raise ChannelError(f"offline: {resource_type} {file_key} not fetched", retryable=False)


def _warn_unknown_target(target: str) -> None:
    if not looks_like_id(target) and classify(target).value == "chat_id":
        click.echo(f"warning: {target!r} has no known id prefix; sending as chat_id", err=True)


def _client() -> FeishuClient:
    try:
        return FeishuClient.from_settings(get_settings())
    except BridgeError as exc:
        raise click.ClickException(str(exc)) from exc


def _echo_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def _parse_button(raw: str) -> dict[str, str]:
    # label=value[:style]
    label, _, rest = raw.partition("=")
    value, _, style = rest.partition(":")
    return {"text": label, "value": value or label, "type": style or "default"}


@click.group()
def cli() -> None:
    """Feishu bridge CLI."""


@cli.command("preview-card")
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
@click.option("--title", type=str, default=None, help="Card title when the text has no '# ' heading.")
@click.option("--template", type=str, default=None, help="Header color template.")
@click.option("--button", "buttons", multiple=True, help="Button as label=value[:style].")
def preview_card(source: TextIO, title: str | None, template: str | None, buttons: tuple[str, ...]) -> None:
    """Print the card JSON compiled from a markdown file (or stdin)."""
    options = CardOptions.of(
        title=title,
        template=template,
        buttons=[_parse_button(raw) for raw in buttons],
    )
    _echo_json(card_to_dict(build_card(source.read(), options)))


@cli.command("classify")
@click.argument("target")
def classify_cmd(target: str) -> None:
    """Print the receive_id_type used to address TARGET."""
    click.echo(classify(target).value)


@cli.command()
@click.argument("target", metavar=TARGET_HINT)
@click.argument("text")
@click.option("--message-id", type=str, default=None, help="Update this message in place.")
def send(target: str, text: str, message_id: str | None) -> None:
    """Deliver TEXT to TARGET as text or card, like a host reply."""
    _warn_unknown_target(target)
    router = SendRouter(_client())
    result = asyncio.run(router.send_auto(target, text, SendState(message_id=message_id)))
    click.echo(f"{result.delivery}: {result.message_id or '-'}")


@cli.command()
@click.argument("target", metavar=TARGET_HINT)
@click.option("--title", required=True)
@click.option("--content", default="", show_default=True)
@click.option(
    "--status",
    "status_name",
    default="running",
    show_default=True,
    help="pending, running, success, error or warning.",
)
@click.option("--message-id", type=str, default=None, help="Update an existing status card.")
def status(target: str, title: str, content: str, status_name: str, message_id: str | None) -> None:
    """Send or update a status card."""
    if not message_id:
        _warn_unknown_target(target)
    router = SendRouter(_client())
    if message_id:
        pending = router.update_status_card(message_id, title=title, content=content, status=status_name)
    else:
        pending = router.send_status_card(target, title=title, content=content, status=status_name)
    result = asyncio.run(pending)
    click.echo(f"{result.delivery}: {result.message_id or '-'}")


@cli.command()
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
@click.option("--offline", is_flag=True, help="Do not download media; images degrade to placeholders.")
@click.option(
    "--media-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Override FEISHU_MEDIA_DIR.",
)
def normalize(source: TextIO, offline: bool, media_dir: Path | None) -> None:
    """Normalize a captured event JSON and print the canonical message."""
    try:
        event = json.load(source)
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"invalid event JSON: {exc}") from exc
    if not isinstance(event, dict):
        raise click.ClickException("event JSON must be an object")

    if "action" in event or "action" in (event.get("event") or {}):
        message = normalize_card_action(event)
    else:
        transport = _OfflineTransport() if offline else _client()
        root = media_dir or get_settings().media_root
        normalizer = InboundMessageNormalizer(MediaResolver(transport, root))
        message = asyncio.run(normalizer.normalize(event))

    if message is None:
        click.echo("dropped", err=True)
        sys.exit(1)
    _echo_json(
        {
            "kind": message.kind,
            "message_id": message.message_id,
            "sender_id": message.sender_id,
            "conversation_id": message.conversation_id,
            "text": message.text,
            "media": [
                {
                    "remote_key": ref.remote_key,
                    "kind": ref.kind.value,
                    "local_path": str(ref.local_path) if ref.local_path else None,
                    "mime_type": ref.mime_type,
                }
                for ref in message.media_refs
            ],
        }
    )
