"""Channel adapter registry: maps channel_type strings to adapter instances."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from feishu_bridge.channels.base import ChannelAdapter

logger = logging.getLogger(__name__)

_adapters: dict[str, ChannelAdapter] = {}


def register_channel(adapter: ChannelAdapter) -> None:
    """Register a channel adapter instance, replacing any previous one."""
    if adapter.channel_type in _adapters:
        logger.info("Replacing registered %s channel adapter", adapter.channel_type)
    _adapters[adapter.channel_type] = adapter


def get_channel(channel_type: str) -> ChannelAdapter | None:
    return _adapters.get(channel_type)


def all_channels() -> dict[str, ChannelAdapter]:
    """Return a copy of the current adapter map."""
    return dict(_adapters)


def _reset() -> None:
    """Clear all registered adapters (for testing)."""
    _adapters.clear()
