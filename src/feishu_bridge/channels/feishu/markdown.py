"""Markdown to Feishu card element compiler.

Feishu card markdown renders text, emphasis, lists and code fences, but has
no pipe-table syntax and only two heading sizes.  This module scans the text
once, left to right:

- pipe tables (a ``|`` row followed by a ``|---|`` separator row) become
  native ``Table`` elements;
- everything else accumulates into ``TextBlock`` elements, with headings
  deeper than ``##`` clamped to ``##``.

Fenced code blocks are copied through untouched.
"""

from __future__ import annotations

import re

from feishu_bridge.channels.feishu.elements import CardElement, Table, TableColumn, TextBlock

MAX_TABLE_PAGE_SIZE = 10

_SEPARATOR_RE = re.compile(r"^[\s|:\-]+$")
_DEEP_HEADING_RE = re.compile(r"^(\s{0,3})#{3,}(?=\s|$)")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


def compile_markdown(markdown: str) -> list[CardElement]:
    """Compile markdown into an ordered list of card elements."""
    lines = (markdown or "").replace("\r\n", "\n").split("\n")
    elements: list[CardElement] = []
    pending: list[str] = []
    in_fence = False
    i = 0

    while i < len(lines):
        line = lines[i]
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            pending.append(line)
            i += 1
            continue

        if not in_fence and _is_table_row(line) and i + 1 < len(lines) and _is_separator(lines[i + 1]):
            block = _collect_table_block(lines, i)
            i += len(block)
            table = _parse_table(block)
            if table is None:
                pending.extend(block)
                continue
            _flush_text(pending, elements)
            elements.append(table)
            continue

        pending.append(line)
        i += 1

    _flush_text(pending, elements)
    return elements


def downgrade_headings(text: str) -> str:
    """Clamp ``###``-and-deeper headings to ``##``, leaving fenced code alone."""
    out: list[str] = []
    in_fence = False
    for line in text.split("\n"):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        elif not in_fence:
            line = _DEEP_HEADING_RE.sub(r"\1##", line, count=1)
        out.append(line)
    return "\n".join(out)


def split_cells(line: str) -> list[str]:
    return [cell.strip() for cell in line.split("|") if cell.strip()]


def _is_table_row(line: str) -> bool:
    return line.startswith("|")


def _is_separator(line: str) -> bool:
    return bool(_SEPARATOR_RE.match(line))


def _collect_table_block(lines: list[str], start: int) -> list[str]:
    block: list[str] = []
    for line in lines[start:]:
        if not _is_table_row(line):
            break
        block.append(line)
    return block


def _parse_table(block: list[str]) -> Table | None:
    if len(block) < 2:
        return None
    headers = split_cells(block[0])
    if not headers:
        return None

    columns = [TableColumn(key=f"col_{idx}", display_name=name) for idx, name in enumerate(headers)]
    rows: list[dict[str, str]] = []
    for line in block[2:]:
        cells = split_cells(line)
        rows.append(
            {columns[idx].key: cell for idx, cell in enumerate(cells) if idx < len(columns)}
        )
    return Table(columns=columns, rows=rows, page_size=min(len(rows), MAX_TABLE_PAGE_SIZE))


def _flush_text(pending: list[str], elements: list[CardElement]) -> None:
    text = "\n".join(pending).strip()
    pending.clear()
    if text:
        elements.append(TextBlock(content=downgrade_headings(text)))
