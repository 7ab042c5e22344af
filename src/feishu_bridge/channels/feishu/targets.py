"""Recipient id classification for Feishu ``receive_id_type`` addressing."""

from __future__ import annotations

from enum import Enum


class AddressMode(str, Enum):
    OPEN_ID = "open_id"
    UNION_ID = "union_id"
    EMAIL = "email"
    CHAT_ID = "chat_id"


_PREFIX_MODES: tuple[tuple[str, AddressMode], ...] = (
    ("ou_", AddressMode.OPEN_ID),
    ("on_", AddressMode.UNION_ID),
    ("email_", AddressMode.EMAIL),
)

KNOWN_ID_PREFIXES = ("oc_", "ou_", "on_")
TARGET_HINT = "<chat_id|open_id|union_id>"


def classify(target: str | None) -> AddressMode:
    """Pick the addressing mode for ``target`` by prefix; chat ids are the default."""
    if target:
        for prefix, mode in _PREFIX_MODES:
            if target.startswith(prefix):
                return mode
    return AddressMode.CHAT_ID


def looks_like_id(target: str | None) -> bool:
    return bool(target) and str(target).startswith(KNOWN_ID_PREFIXES)
