"""Card assembly: titles, color templates, status cards and update cards."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from feishu_bridge.channels.feishu.elements import (
    ActionRow,
    Button,
    CardElement,
    element_to_dict,
)
from feishu_bridge.channels.feishu.markdown import compile_markdown

DEFAULT_TEMPLATE = "grey"
SUCCESS_TEMPLATE = "green"
SUCCESS_MARKERS = ("✅", "成功")

# status -> (color template, title icon)
STATUS_STYLES: dict[str, tuple[str, str]] = {
    "pending": ("grey", "⏳"),
    "running": ("blue", "🔄"),
    "success": ("green", "✅"),
    "error": ("red", "❌"),
    "warning": ("orange", "⚠️"),
}

_TITLE_RE = re.compile(r"^# (.*)$")


@dataclass(frozen=True, slots=True)
class Card:
    title: str | None
    color_template: str
    elements: list[CardElement] = field(default_factory=list)


@dataclass(slots=True)
class CardOptions:
    title: str | None = None
    template: str | None = None
    buttons: list[Button] = field(default_factory=list)

    @classmethod
    def of(
        cls,
        *,
        title: str | None = None,
        template: str | None = None,
        buttons: Iterable[Button | dict[str, Any]] | None = None,
    ) -> CardOptions:
        return cls(title=title, template=template, buttons=_coerce_buttons(buttons))


def build_card(markdown: str, options: CardOptions | None = None) -> Card:
    """Wrap compiled markdown into a card.

    A leading ``# Heading`` line wins over ``options.title`` and is removed
    from the body.  A card without a title carries no header at all.
    """
    options = options or CardOptions()
    title = options.title or None
    body = markdown or ""

    first_line, sep, rest = body.lstrip("\n").partition("\n")
    match = _TITLE_RE.match(first_line.rstrip())
    if match:
        title = match.group(1).strip() or None
        body = rest if sep else ""

    elements = compile_markdown(body)
    if options.buttons:
        elements.append(ActionRow(buttons=list(options.buttons)))

    return Card(
        title=title,
        color_template=options.template or DEFAULT_TEMPLATE,
        elements=elements,
    )


def build_update_card(markdown: str, options: CardOptions | None = None) -> Card:
    """Build the replacement card for an in-place update.

    Content carrying a success marker always renders green, even when the
    caller asked for another template.
    """
    # TODO: confirm with product whether an explicit template should win here.
    card = build_card(markdown, options)
    if any(marker in (markdown or "") for marker in SUCCESS_MARKERS):
        return Card(title=card.title, color_template=SUCCESS_TEMPLATE, elements=card.elements)
    return card


def resolve_status(status: str, default_status: str) -> tuple[str, str]:
    key = (status or "").strip().lower()
    if key in STATUS_STYLES:
        return STATUS_STYLES[key]
    return STATUS_STYLES[default_status]


def build_status_card(
    *,
    title: str,
    content: str,
    status: str,
    buttons: Iterable[Button | dict[str, Any]] | None = None,
    default_status: str = "running",
) -> Card:
    template, icon = resolve_status(status, default_status)
    elements = compile_markdown(content or "")
    coerced = _coerce_buttons(buttons)
    if coerced:
        elements.append(ActionRow(buttons=coerced))
    return Card(
        title=f"{icon} {title}" if title else None,
        color_template=template,
        elements=elements,
    )


def card_to_dict(card: Card) -> dict[str, Any]:
    document: dict[str, Any] = {}
    if card.title:
        document["header"] = {
            "title": {"tag": "plain_text", "content": card.title},
            "template": card.color_template,
        }
    document["elements"] = [element_to_dict(element) for element in card.elements]
    return document


def card_json(card: Card) -> str:
    return json.dumps(card_to_dict(card), ensure_ascii=False)


def _coerce_buttons(buttons: Iterable[Button | dict[str, Any]] | None) -> list[Button]:
    if not buttons:
        return []
    return [b if isinstance(b, Button) else Button.from_dict(b) for b in buttons]
