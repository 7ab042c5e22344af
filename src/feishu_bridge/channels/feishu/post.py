"""Typed model of Feishu rich-text ("post") content.

Post content JSON structure::

    {
      "<locale>": {               # optional wrapper, e.g. "zh_cn", "en_us"
        "title": "...",
        "content": [              # list of paragraphs
          [                       # each paragraph is a list of inline elements
            {"tag": "text", "text": "Hello ", "style": ["bold"]},
            {"tag": "a", "text": "link", "href": "https://..."},
            {"tag": "at", "user_id": "ou_xxx", "user_name": "Name"},
            {"tag": "img", "image_key": "..."},
            {"tag": "media", "file_key": "...", "image_key": "..."},
          ],
        ],
      }
    }
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

IMAGE_PLACEHOLDER = "[image]"
VIDEO_PLACEHOLDER = "[video]"
PREFERRED_LOCALES = ("zh_cn", "en_us", "ja_jp")


@dataclass(frozen=True, slots=True)
class InlineText:
    text: str
    bold: bool = False
    italic: bool = False
    strikethrough: bool = False


@dataclass(frozen=True, slots=True)
class InlineLink:
    text: str
    href: str


@dataclass(frozen=True, slots=True)
class InlineMention:
    name: str
    user_id: str = ""


@dataclass(frozen=True, slots=True)
class InlineImage:
    image_key: str


@dataclass(frozen=True, slots=True)
class InlineMedia:
    file_key: str
    cover_key: str = ""


Inline = InlineText | InlineLink | InlineMention | InlineImage | InlineMedia


@dataclass(frozen=True, slots=True)
class Paragraph:
    elements: tuple[Inline, ...]


@dataclass(frozen=True, slots=True)
class PostDocument:
    locale: str
    title: str
    paragraphs: tuple[Paragraph, ...]


PostNode = PostDocument | Paragraph | Inline


def parse_post(payload: Any) -> list[PostDocument]:
    """Find every post body in ``payload``, however deeply it is wrapped."""
    documents: list[PostDocument] = []
    _collect_documents(payload, "", documents)
    return documents


def select_document(documents: list[PostDocument]) -> PostDocument | None:
    if not documents:
        return None
    by_locale = {doc.locale: doc for doc in reversed(documents)}
    for locale in ("", *PREFERRED_LOCALES):
        if locale in by_locale:
            return by_locale[locale]
    return documents[0]


def render_document(document: PostDocument) -> str:
    lines = ["".join(render_inline(el) for el in para.elements) for para in document.paragraphs]
    body = "\n".join(lines)
    if document.title:
        return f"# {document.title}\n{body}" if body else f"# {document.title}"
    return body


def render_inline(element: Inline) -> str:
    if isinstance(element, InlineText):
        text = element.text
        if not text.strip():
            return text
        if element.strikethrough:
            text = f"~~{text}~~"
        if element.italic:
            text = f"*{text}*"
        if element.bold:
            text = f"**{text}**"
        return text
    if isinstance(element, InlineLink):
        return f"[{element.text or element.href}]({element.href})" if element.href else element.text
    if isinstance(element, InlineMention):
        return f"@{element.name or element.user_id}"
    if isinstance(element, InlineImage):
        return IMAGE_PLACEHOLDER
    if isinstance(element, InlineMedia):
        return VIDEO_PLACEHOLDER
    raise TypeError(f"unsupported post element: {type(element).__name__}")


def iter_image_keys(node: PostNode) -> Iterator[str]:
    """Yield image keys below ``node`` in document order."""
    if isinstance(node, PostDocument):
        for paragraph in node.paragraphs:
            yield from iter_image_keys(paragraph)
    elif isinstance(node, Paragraph):
        for element in node.elements:
            yield from iter_image_keys(element)
    elif isinstance(node, InlineImage):
        if node.image_key:
            yield node.image_key


def collect_image_keys(documents: list[PostDocument]) -> list[str]:
    keys: list[str] = []
    for document in documents:
        for key in iter_image_keys(document):
            if key not in keys:
                keys.append(key)
    return keys


def _collect_documents(node: Any, locale: str, out: list[PostDocument]) -> None:
    if isinstance(node, dict):
        if isinstance(node.get("content"), list):
            out.append(_parse_document(node, locale))
            return
        for key, value in node.items():
            _collect_documents(value, str(key), out)


def _parse_document(node: dict[str, Any], locale: str) -> PostDocument:
    paragraphs: list[Paragraph] = []
    for raw_para in node.get("content") or []:
        if not isinstance(raw_para, list):
            continue
        elements = [el for el in (_parse_inline(item) for item in raw_para) if el is not None]
        paragraphs.append(Paragraph(elements=tuple(elements)))
    return PostDocument(
        locale=locale,
        title=str(node.get("title") or ""),
        paragraphs=tuple(paragraphs),
    )


def _parse_inline(item: Any) -> Inline | None:
    if not isinstance(item, dict):
        return None
    tag = str(item.get("tag") or "")
    if tag in {"text", "md"}:
        style = item.get("style") if isinstance(item.get("style"), list) else []
        flags = {str(s) for s in style}
        return InlineText(
            text=str(item.get("text") or ""),
            bold="bold" in flags,
            italic="italic" in flags,
            strikethrough=bool(flags & {"lineThrough", "strikethrough"}),
        )
    if tag == "a":
        return InlineLink(text=str(item.get("text") or ""), href=str(item.get("href") or ""))
    if tag == "at":
        return InlineMention(
            name=str(item.get("user_name") or ""),
            user_id=str(item.get("user_id") or ""),
        )
    if tag == "img":
        return InlineImage(image_key=str(item.get("image_key") or ""))
    if tag == "media":
        return InlineMedia(
            file_key=str(item.get("file_key") or ""),
            cover_key=str(item.get("image_key") or ""),
        )
    return None
