"""Typed card elements and their Feishu wire representation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

TABLE_HEADER_STYLE: dict[str, Any] = {
    "text_align": "left",
    "text_size": "normal",
    "background_style": "grey",
    "bold": True,
    "lines": 1,
}


class ButtonStyle(str, Enum):
    DEFAULT = "default"
    PRIMARY = "primary"
    DANGER = "danger"


@dataclass(frozen=True, slots=True)
class Button:
    label: str
    value: str
    style: ButtonStyle = ButtonStyle.DEFAULT

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Button:
        """Build a button from host options (``text``/``label``, ``value``, ``type``/``style``)."""
        label = str(data.get("label") or data.get("text") or "")
        value = str(data.get("value") or label)
        raw_style = str(data.get("style") or data.get("type") or "default").lower()
        try:
            style = ButtonStyle(raw_style)
        except ValueError:
            style = ButtonStyle.DEFAULT
        return cls(label=label, value=value, style=style)


@dataclass(frozen=True, slots=True)
class TextBlock:
    content: str


@dataclass(frozen=True, slots=True)
class TableColumn:
    key: str
    display_name: str


@dataclass(frozen=True, slots=True)
class Table:
    columns: list[TableColumn]
    rows: list[dict[str, str]]
    page_size: int


@dataclass(frozen=True, slots=True)
class ActionRow:
    buttons: list[Button] = field(default_factory=list)


CardElement = TextBlock | Table | ActionRow


def element_to_dict(element: CardElement) -> dict[str, Any]:
    if isinstance(element, TextBlock):
        return {"tag": "markdown", "content": element.content}
    if isinstance(element, Table):
        return {
            "tag": "table",
            "page_size": element.page_size,
            "row_height": "low",
            "header_style": dict(TABLE_HEADER_STYLE),
            "columns": [
                {"name": col.key, "display_name": col.display_name, "width": "auto"}
                for col in element.columns
            ],
            "rows": [dict(row) for row in element.rows],
        }
    if isinstance(element, ActionRow):
        return {
            "tag": "action",
            "actions": [
                {
                    "tag": "button",
                    "text": {"tag": "plain_text", "content": button.label},
                    "type": button.style.value,
                    "value": {"action": button.value},
                }
                for button in element.buttons
            ],
        }
    raise TypeError(f"unsupported card element: {type(element).__name__}")
