"""Inbound media resolution into a content-addressed local cache."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Protocol
from uuid import uuid4

import httpx

from feishu_bridge.channels.base import MediaKind, MediaRef
from feishu_bridge.errors import ChannelError

logger = logging.getLogger(__name__)

PLATFORM_DIR = "feishu"

_EXTENSIONS = {
    MediaKind.IMAGE: ".png",
    MediaKind.AUDIO: ".opus",
    MediaKind.OTHER: ".bin",
}
_DEFAULT_MIME = {
    MediaKind.IMAGE: "image/png",
    MediaKind.AUDIO: "audio/opus",
    MediaKind.OTHER: "application/octet-stream",
}


class ByteSource(Protocol):
    """Resource body as handed over by the transport."""

    def aiter_bytes(self) -> AsyncIterator[bytes]: ...


class MediaTransport(Protocol):
    async def fetch_resource(
        self, message_id: str, file_key: str, resource_type: str
    ) -> ByteSource: ...


class StreamSource:
    """A body still arriving as an async chunk iterator."""

    def __init__(self, chunks: AsyncIterator[bytes]) -> None:
        self._chunks = chunks

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self._chunks:
            if chunk:
                yield chunk


def media_path(media_root: Path, remote_key: str, kind: MediaKind) -> Path:
    """Cache location for ``remote_key``; a function of key and kind only."""
    safe_key = re.sub(r"[^a-zA-Z0-9_-]", "_", remote_key)[:160] or "media"
    return media_root / PLATFORM_DIR / kind.value / f"{safe_key}{_EXTENSIONS[kind]}"


def sniff_mime(path: Path, kind: MediaKind) -> str:
    try:
        with path.open("rb") as handle:
            head = handle.read(40)
    except OSError:
        return _DEFAULT_MIME[kind]
    if head[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if head[:4] == b"\x89PNG":
        return "image/png"
    if head[:4] == b"GIF8":
        return "image/gif"
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head[:2] == b"BM":
        return "image/bmp"
    if head[:4] == b"OggS":
        return "audio/opus" if b"OpusHead" in head else "audio/ogg"
    return _DEFAULT_MIME[kind]


class MediaResolver:
    """Fetch Feishu message resources once and serve them from disk afterwards.

    The check-then-write is not locked: two concurrent fetches of a cold key
    may both download. Each download writes its own temp file, and the rename
    makes the last write win with identical bytes.
    """

    def __init__(self, transport: MediaTransport, media_root: Path) -> None:
        self._transport = transport
        self._media_root = media_root

    async def fetch(self, remote_key: str, context_id: str, kind: MediaKind) -> MediaRef:
        target = media_path(self._media_root, remote_key, kind)
        if target.is_file():
            logger.debug("Media cache hit for %s at %s", remote_key, target)
            return MediaRef(remote_key, kind, target, sniff_mime(target, kind))

        resource_type = "image" if kind is MediaKind.IMAGE else "file"
        partial = target.with_name(f".{target.name}.{uuid4().hex}.part")
        try:
            source = await self._transport.fetch_resource(context_id, remote_key, resource_type)
            total = await _write_source(source, partial)
            if total == 0:
                raise ChannelError("media_body_empty", retryable=False)
            os.replace(partial, target)
        except (ChannelError, httpx.HTTPError, OSError) as exc:
            logger.warning(
                "Media download failed for key=%s message_id=%s kind=%s: %s",
                remote_key,
                context_id,
                kind.value,
                exc,
            )
            partial.unlink(missing_ok=True)
            return MediaRef(remote_key, kind)
        except Exception:
            # A transport returning something other than a ByteSource lands here.
            logger.exception(
                "Unexpected media download error for key=%s message_id=%s kind=%s",
                remote_key,
                context_id,
                kind.value,
            )
            partial.unlink(missing_ok=True)
            return MediaRef(remote_key, kind)

        logger.info("Cached media %s (%d bytes) at %s", remote_key, total, target)
        return MediaRef(remote_key, kind, target, sniff_mime(target, kind))


async def _write_source(source: ByteSource, path: Path) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    total = 0
    with path.open("wb") as handle:
        async for chunk in source.aiter_bytes():
            total += len(chunk)
            handle.write(chunk)
    return total
