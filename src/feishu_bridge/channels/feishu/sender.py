"""Outbound delivery: plain text, cards, status cards and in-place updates."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import httpx

from feishu_bridge.channels.base import DeliveryResult
from feishu_bridge.channels.feishu.cards import (
    Card,
    CardOptions,
    build_card,
    build_status_card,
    build_update_card,
    card_to_dict,
)
from feishu_bridge.channels.feishu.elements import Button
from feishu_bridge.channels.feishu.targets import classify
from feishu_bridge.errors import ChannelError

logger = logging.getLogger(__name__)

STRUCTURE_CHARS = frozenset("#*`[-|\n")


class MessageTransport(Protocol):
    async def send_message(
        self,
        *,
        receive_id_type: str,
        receive_id: str,
        msg_type: str,
        content: dict[str, Any],
    ) -> str | None: ...

    async def patch_message(self, message_id: str, content: dict[str, Any]) -> None: ...

    async def upload_image(self, path: Path) -> str: ...

    async def upload_file(self, path: Path, file_type: str = "stream") -> str: ...


@dataclass(slots=True)
class SendState:
    """Caller-held delivery state; a message id requests an in-place update."""

    message_id: str | None = None


def needs_structuring(text: str) -> bool:
    return any(ch in STRUCTURE_CHARS for ch in text)


class SendRouter:
    def __init__(self, transport: MessageTransport) -> None:
        self._transport = transport

    async def send_auto(
        self, target: str, text: str, state: SendState | None = None
    ) -> DeliveryResult:
        """Deliver host text, updating ``state.message_id`` in place when possible.

        A failed update falls back to a fresh delivery exactly once; failures
        of that fresh delivery propagate.
        """
        if state is not None and state.message_id:
            try:
                return await self.update_card(state.message_id, text)
            except (ChannelError, httpx.HTTPError) as exc:
                logger.warning(
                    "Update of message_id=%s for target=%s failed, sending new message: %s",
                    state.message_id,
                    target,
                    exc,
                )

        if needs_structuring(text):
            return await self.send_card(target, text)
        return await self.send_text(target, text)

    async def send_text(self, target: str, text: str) -> DeliveryResult:
        message_id = await self._create(target, "text", {"text": text})
        return DeliveryResult(message_id=message_id, delivery="text")

    async def send_card(
        self, target: str, markdown: str, options: CardOptions | None = None
    ) -> DeliveryResult:
        card = build_card(markdown, options)
        return await self._send_card(target, card)

    async def update_card(
        self, message_id: str, markdown: str, options: CardOptions | None = None
    ) -> DeliveryResult:
        card = build_update_card(markdown, options)
        return await self._patch_card(message_id, card)

    async def send_status_card(
        self,
        target: str,
        *,
        title: str,
        content: str,
        status: str = "running",
        buttons: Iterable[Button | dict[str, Any]] | None = None,
    ) -> DeliveryResult:
        card = build_status_card(
            title=title, content=content, status=status, buttons=buttons, default_status="running"
        )
        return await self._send_card(target, card)

    async def update_status_card(
        self,
        message_id: str,
        *,
        title: str,
        content: str,
        status: str = "success",
        buttons: Iterable[Button | dict[str, Any]] | None = None,
    ) -> DeliveryResult:
        card = build_status_card(
            title=title, content=content, status=status, buttons=buttons, default_status="success"
        )
        return await self._patch_card(message_id, card)

    async def send_image(self, target: str, path: Path) -> DeliveryResult:
        image_key = await self._transport.upload_image(path)
        message_id = await self._create(target, "image", {"image_key": image_key})
        return DeliveryResult(message_id=message_id, delivery="image")

    async def send_file(self, target: str, path: Path) -> DeliveryResult:
        file_key = await self._transport.upload_file(path, "stream")
        message_id = await self._create(target, "file", {"file_key": file_key})
        return DeliveryResult(message_id=message_id, delivery="file")

    async def send_video(self, target: str, path: Path) -> DeliveryResult:
        # Sent as a generic file: "media" messages need a cover image and an mp4 upload.
        return await self.send_file(target, path)

    async def _send_card(self, target: str, card: Card) -> DeliveryResult:
        message_id = await self._create(target, "interactive", card_to_dict(card))
        return DeliveryResult(message_id=message_id, delivery="card")

    async def _patch_card(self, message_id: str, card: Card) -> DeliveryResult:
        await self._transport.patch_message(message_id, card_to_dict(card))
        return DeliveryResult(message_id=message_id, delivery="update")

    async def _create(self, target: str, msg_type: str, content: dict[str, Any]) -> str | None:
        mode = classify(target)
        try:
            return await self._transport.send_message(
                receive_id_type=mode.value,
                receive_id=target,
                msg_type=msg_type,
                content=content,
            )
        except (ChannelError, httpx.HTTPError):
            logger.error(
                "Feishu %s delivery to target=%s (%s) failed", msg_type, target, mode.value
            )
            raise
