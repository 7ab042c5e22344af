"""Channel adapter protocol and the canonical message shape handed to the host."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable


class MediaKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class MediaRef:
    """A remote media key plus, once resolved, its locally cached copy.

    ``local_path`` is None when the download failed; consumers should treat
    the media as unavailable rather than as an error.
    """

    remote_key: str
    kind: MediaKind
    local_path: Path | None = None
    mime_type: str | None = None

    @property
    def available(self) -> bool:
        return self.local_path is not None


@dataclass(frozen=True, slots=True)
class CanonicalMessage:
    """Normalized inbound message from any channel."""

    text: str
    sender_id: str
    conversation_id: str
    media_refs: tuple[MediaRef, ...] = ()
    message_id: str = ""
    chat_type: str = ""
    kind: str = "text"
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def media_paths(self) -> list[Path]:
        return [ref.local_path for ref in self.media_refs if ref.local_path is not None]


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    message_id: str | None
    delivery: str
    channel: str = "feishu"


class ReplyDispatcher(Protocol):
    """Host runtime pipeline that consumes canonical messages."""

    async def dispatch(self, message: CanonicalMessage) -> None: ...


@runtime_checkable
class ChannelAdapter(Protocol):
    """Protocol that all channel adapters must implement."""

    @property
    def channel_type(self) -> str:
        """Unique identifier for this channel (e.g. 'feishu')."""
        ...

    async def send_text(self, recipient: str, text: str) -> DeliveryResult:
        """Deliver host text to a recipient, choosing text or card form."""
        ...

    async def parse_inbound(self, payload: dict[str, Any]) -> list[CanonicalMessage]:
        """Extract canonical messages from a raw inbound event payload."""
        ...
