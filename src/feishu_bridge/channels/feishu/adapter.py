"""Feishu channel adapter: wires the transport, media cache, normalizer and sender."""

from __future__ import annotations

import logging
from typing import Any

from feishu_bridge.channels.base import CanonicalMessage, DeliveryResult, ReplyDispatcher
from feishu_bridge.channels.feishu.client import FeishuClient
from feishu_bridge.channels.feishu.inbound import InboundMessageNormalizer, normalize_card_action
from feishu_bridge.channels.feishu.media import MediaResolver
from feishu_bridge.channels.feishu.sender import SendRouter, SendState
from feishu_bridge.config import Settings

logger = logging.getLogger(__name__)


class FeishuAdapter:
    def __init__(
        self,
        settings: Settings,
        dispatcher: ReplyDispatcher,
        client: FeishuClient | None = None,
    ) -> None:
        self._settings = settings
        self._dispatcher = dispatcher
        self._client = client or FeishuClient.from_settings(settings)
        self._media = MediaResolver(self._client, settings.media_root)
        self._normalizer = InboundMessageNormalizer(self._media)
        self._sender = SendRouter(self._client)
        self._allowed_chats = settings.allowed_chat_ids

    @property
    def channel_type(self) -> str:
        return "feishu"

    @property
    def sender(self) -> SendRouter:
        return self._sender

    @property
    def normalizer(self) -> InboundMessageNormalizer:
        return self._normalizer

    @property
    def verification_token(self) -> str:
        return self._settings.feishu_verification_token

    async def send_text(
        self, recipient: str, text: str, state: SendState | None = None
    ) -> DeliveryResult:
        return await self._sender.send_auto(recipient, text, state)

    async def parse_inbound(self, payload: dict[str, Any]) -> list[CanonicalMessage]:
        message = await self._normalizer.normalize(payload)
        return [message] if message is not None else []

    def is_allowed(self, message: CanonicalMessage) -> bool:
        if not self._allowed_chats:
            return True
        return message.conversation_id in self._allowed_chats

    async def handle_message_event(self, event: dict[str, Any]) -> CanonicalMessage | None:
        """Normalize one message event and hand it to the host pipeline."""
        message = await self._normalizer.normalize(event)
        if message is None:
            return None
        if not self.is_allowed(message):
            logger.info(
                "Feishu message %s from chat %s ignored (not in allowlist)",
                message.message_id,
                message.conversation_id,
            )
            return None
        await self._dispatcher.dispatch(message)
        return message

    async def handle_card_action(self, event: dict[str, Any]) -> CanonicalMessage | None:
        message = normalize_card_action(event)
        if message is None or not self.is_allowed(message):
            return None
        await self._dispatcher.dispatch(message)
        return message
