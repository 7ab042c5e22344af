"""Inbound Feishu event normalization into canonical messages."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from feishu_bridge.channels.base import CanonicalMessage, MediaKind, MediaRef
from feishu_bridge.channels.feishu.media import MediaResolver
from feishu_bridge.channels.feishu.post import (
    IMAGE_PLACEHOLDER,
    VIDEO_PLACEHOLDER,
    collect_image_keys,
    parse_post,
    render_document,
    select_document,
)

logger = logging.getLogger(__name__)

IMAGE_FAILED_PLACEHOLDER = "[image download failed]"
AUDIO_PLACEHOLDER = "[audio]"
FILE_PLACEHOLDER = "[file]"
STICKER_PLACEHOLDER = "[sticker]"
BUTTON_CLICKED_PREFIX = "[button clicked]"


class MessageKind(str, Enum):
    TEXT = "text"
    POST = "post"
    IMAGE = "image"
    AUDIO = "audio"
    FILE = "file"
    MEDIA = "media"
    STICKER = "sticker"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> MessageKind:
        raw = str(value or "").strip().lower()
        if raw == "video":
            return cls.MEDIA
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


@dataclass(slots=True)
class _Body:
    text: str
    media_refs: list[MediaRef]


@dataclass(slots=True)
class _Context:
    message_id: str
    message_type: str
    content: dict[str, Any]
    mentions: list[dict[str, Any]]


def resolve_sender_id(sender: object) -> str:
    """Prefer the tenant-stable user_id, then open_id, then union_id."""
    if not isinstance(sender, dict):
        return ""
    ids = sender.get("sender_id")
    if not isinstance(ids, dict):
        return ""
    for key in ("user_id", "open_id", "union_id"):
        value = ids.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def apply_mentions(text: str, mentions: list[dict[str, Any]]) -> str:
    """Replace mention placeholders (``@_user_1``) with ``@<name>``.

    Occurrences are located in the original text in mention-list order; a key
    found inside a span already claimed by an earlier mention is left alone.
    All edits are then applied in one pass from the end of the string.
    """
    edits: list[tuple[int, int, str]] = []
    for mention in mentions:
        key = str(mention.get("key") or "")
        if not key:
            continue
        replacement = f"@{mention.get('name') or ''}"
        start = 0
        while (pos := text.find(key, start)) != -1:
            end = pos + len(key)
            if any(pos < e_end and end > e_start for e_start, e_end, _ in edits):
                start = pos + 1
                continue
            edits.append((pos, end, replacement))
            start = end

    result = text
    for pos, end, replacement in sorted(edits, key=lambda edit: edit[0], reverse=True):
        result = result[:pos] + replacement + result[end:]
    return result


def load_content(raw: object, message_id: str = "") -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Unparseable content for message_id=%s", message_id)
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


class InboundMessageNormalizer:
    """Turns ``im.message.receive_v1`` events into canonical messages."""

    def __init__(self, media: MediaResolver) -> None:
        self._media = media
        self._handlers: dict[MessageKind, Callable[[_Context], Awaitable[_Body]]] = {
            MessageKind.TEXT: self._text,
            MessageKind.POST: self._post,
            MessageKind.IMAGE: self._image,
            MessageKind.AUDIO: self._audio,
            MessageKind.FILE: self._placeholder(FILE_PLACEHOLDER),
            MessageKind.MEDIA: self._placeholder(VIDEO_PLACEHOLDER),
            MessageKind.STICKER: self._placeholder(STICKER_PLACEHOLDER),
            MessageKind.UNKNOWN: self._unsupported,
        }
        missing = set(MessageKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no handler for message kinds: {sorted(k.value for k in missing)}")

    async def normalize(self, event: dict[str, Any]) -> CanonicalMessage | None:
        if "message" not in event and isinstance(event.get("event"), dict):
            event = event["event"]
        message = event.get("message")
        if not isinstance(message, dict):
            logger.info("Dropping event without message body")
            return None

        message_id = str(message.get("message_id") or "")
        sender_id = resolve_sender_id(event.get("sender"))
        if not sender_id:
            logger.warning("Dropping message_id=%s: sender has no usable id", message_id)
            return None

        message_type = str(message.get("message_type") or "")
        kind = MessageKind.parse(message_type)
        mentions = message.get("mentions")
        ctx = _Context(
            message_id=message_id,
            message_type=message_type,
            content=load_content(message.get("content"), message_id),
            mentions=[m for m in mentions if isinstance(m, dict)] if isinstance(mentions, list) else [],
        )
        body = await self._handlers[kind](ctx)

        if not body.text.strip() and not body.media_refs:
            logger.info("Dropping empty %s message_id=%s", message_type or "?", message_id)
            return None

        return CanonicalMessage(
            text=body.text,
            sender_id=sender_id,
            conversation_id=str(message.get("chat_id") or ""),
            media_refs=tuple(body.media_refs),
            message_id=message_id,
            chat_type=str(message.get("chat_type") or ""),
            kind=kind.value,
            raw=event,
        )

    async def _text(self, ctx: _Context) -> _Body:
        text = str(ctx.content.get("text") or "")
        if ctx.mentions:
            text = apply_mentions(text, ctx.mentions)
        return _Body(text=text, media_refs=[])

    async def _post(self, ctx: _Context) -> _Body:
        documents = parse_post(ctx.content)
        document = select_document(documents)
        text = render_document(document).strip() if document is not None else ""

        refs: list[MediaRef] = []
        for key in collect_image_keys(documents):
            ref = await self._media.fetch(key, ctx.message_id, MediaKind.IMAGE)
            if ref.available:
                refs.append(ref)
            else:
                logger.info("Skipping unresolved post image %s in %s", key, ctx.message_id)
        return _Body(text=text, media_refs=refs)

    async def _image(self, ctx: _Context) -> _Body:
        key = str(ctx.content.get("image_key") or "")
        if not key:
            logger.warning("Image message_id=%s has no image_key", ctx.message_id)
            return _Body(text=IMAGE_FAILED_PLACEHOLDER, media_refs=[])
        ref = await self._media.fetch(key, ctx.message_id, MediaKind.IMAGE)
        if not ref.available:
            return _Body(text=IMAGE_FAILED_PLACEHOLDER, media_refs=[])
        return _Body(text=IMAGE_PLACEHOLDER, media_refs=[ref])

    async def _audio(self, ctx: _Context) -> _Body:
        key = str(ctx.content.get("file_key") or "")
        if not key:
            return _Body(text=AUDIO_PLACEHOLDER, media_refs=[])
        ref = await self._media.fetch(key, ctx.message_id, MediaKind.AUDIO)
        return _Body(text=AUDIO_PLACEHOLDER, media_refs=[ref] if ref.available else [])

    @staticmethod
    def _placeholder(text: str) -> Callable[[_Context], Awaitable[_Body]]:
        async def handler(_ctx: _Context) -> _Body:
            return _Body(text=text, media_refs=[])

        return handler

    async def _unsupported(self, ctx: _Context) -> _Body:
        logger.info("Unsupported message_type=%s for %s", ctx.message_type, ctx.message_id)
        return _Body(text=f"[unsupported message: {ctx.message_type or 'unknown'}]", media_refs=[])


def normalize_card_action(event: dict[str, Any]) -> CanonicalMessage | None:
    """Turn a card button callback into a canonical "button clicked" message."""
    if "action" not in event and isinstance(event.get("event"), dict):
        event = event["event"]
    context = event.get("context") if isinstance(event.get("context"), dict) else {}
    operator = event.get("operator") if isinstance(event.get("operator"), dict) else {}
    action = event.get("action") if isinstance(event.get("action"), dict) else {}

    chat_id = str(event.get("open_chat_id") or context.get("open_chat_id") or "")
    message_id = str(event.get("open_message_id") or context.get("open_message_id") or "")
    sender_id = str(operator.get("open_id") or operator.get("user_id") or event.get("open_id") or "")
    if not chat_id or not sender_id:
        logger.warning(
            "Dropping card action for message_id=%s: chat=%r operator=%r",
            message_id,
            chat_id,
            sender_id,
        )
        return None

    value = action.get("value")
    if isinstance(value, dict) and value.get("action") is not None:
        label = str(value["action"])
    elif isinstance(value, dict):
        label = json.dumps(value, ensure_ascii=False, sort_keys=True)
    else:
        label = str(value or "")

    return CanonicalMessage(
        text=f"{BUTTON_CLICKED_PREFIX} {label}".strip(),
        sender_id=sender_id,
        conversation_id=chat_id,
        message_id=message_id,
        kind="card_action",
        raw=event,
    )
