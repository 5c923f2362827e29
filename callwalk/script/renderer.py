"""Render step content into styled text nodes.

Two paths exist. Without segments, placeholder tokens are substituted and
the substituted values come out bold. With segments, the content is walked
with a cursor and every segment found from the cursor onward is emitted as
styled nodes; segments that cannot be found are skipped, so stale segments
left behind by a content edit never break rendering.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import re
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple, Union

from rich.color import Color, ColorParseError
from rich.style import Style
from rich.text import Text

from .steps import ContentSegment, FontSize, SegmentFormatting, StepFormatting

logger = logging.getLogger(__name__)

DEFAULT_TEXT_SIZE = 100
MIN_TEXT_SIZE = 50
MAX_TEXT_SIZE = 120
CPF_MASK = "***.***.***-**"
DEFAULT_CUSTOMER_NAME = "Cliente"

FONT_SCALE = {
    FontSize.SM: 0.875,
    FontSize.BASE: 1.0,
    FontSize.LG: 1.125,
    FontSize.XL: 1.25,
    FontSize.XXL: 1.5,
    FontSize.XXXL: 1.875,
}


@dataclass(frozen=True)
class Placeholders:
    operator_name: str = ""
    customer_first_name: str = DEFAULT_CUSTOMER_NAME


# Order matters: earlier patterns are substituted first.
_PLACEHOLDER_PATTERNS: Sequence[Tuple[Pattern[str], str]] = (
    (re.compile(r"\[Nome do operador\]", re.IGNORECASE), "operator_name"),
    (re.compile(r"\[Primeiro nome do cliente\]", re.IGNORECASE), "customer_first_name"),
    (re.compile(r"\(Primeiro nome do cliente\)", re.IGNORECASE), "customer_first_name"),
    (re.compile(r"\(nome completo do cliente\)", re.IGNORECASE), "customer_first_name"),
    (re.compile(r"\[CPF do cliente\]", re.IGNORECASE), "cpf"),
)


@dataclass(frozen=True)
class TextNode:
    text: str
    bold: bool = False
    italic: bool = False
    color: Optional[str] = None
    background_color: Optional[str] = None
    font_size: Optional[float] = None
    font_family: Optional[str] = None
    alignment: Optional[str] = None
    list_type: Optional[str] = None
    shadow: bool = False
    placeholder: bool = False

    @property
    def styled(self) -> bool:
        return any(
            (
                self.bold,
                self.italic,
                self.color,
                self.background_color,
                self.font_family,
                self.alignment,
                self.list_type,
                self.shadow,
            )
        )


@dataclass(frozen=True)
class LineBreak:
    text: str = "\n"


Node = Union[TextNode, LineBreak]


def base_font_size(text_size_percent: float = DEFAULT_TEXT_SIZE) -> float:
    """Pixel size for the operator's text-size slider (50-120 %)."""
    percent = max(MIN_TEXT_SIZE, min(MAX_TEXT_SIZE, text_size_percent))
    return 16 + (percent / 100) * 16


def font_size_px(token: Optional[FontSize], base_size: float) -> float:
    if token is None:
        return base_size
    return base_size * FONT_SCALE.get(token, 1.0)


def render(
    content: str,
    segments: Optional[Sequence[ContentSegment]] = None,
    placeholders: Optional[Placeholders] = None,
    base_size: Optional[float] = None,
) -> List[Node]:
    """Render ``content`` into nodes. Never raises."""
    placeholders = placeholders or Placeholders()
    if base_size is None:
        base_size = base_font_size()
    try:
        if not segments:
            return _render_placeholders(content, placeholders)
        return _render_segments(content, segments, base_size)
    except Exception:
        logger.debug("Rendering degraded to plain text", exc_info=True)
        return _plain_nodes(content or "")


def plain_text(nodes: Iterable[Node]) -> str:
    return "".join(node.text for node in nodes)


def anchor_segments(
    content: str, segments: Sequence[ContentSegment]
) -> List[ContentSegment]:
    """Return copies of ``segments`` with offsets computed against ``content``.

    Uses the same left-to-right cursor rule as rendering; segments that are not
    found keep ``start``/``end`` as None.
    """
    anchored: List[ContentSegment] = []
    cursor = 0
    for segment in segments:
        index = content.find(segment.text, cursor) if segment.text else -1
        if index == -1:
            anchored.append(replace(segment, start=None, end=None))
            continue
        end = index + len(segment.text)
        anchored.append(replace(segment, start=index, end=end))
        cursor = end
    return anchored


def _render_placeholders(content: str, placeholders: Placeholders) -> List[Node]:
    values = {
        "operator_name": placeholders.operator_name,
        "customer_first_name": placeholders.customer_first_name,
        "cpf": CPF_MASK,
    }
    # Each piece is (text, substituted?); substituted pieces are not rescanned.
    pieces: List[Tuple[str, bool]] = [(content, False)]
    for pattern, name in _PLACEHOLDER_PATTERNS:
        value = values[name]
        expanded: List[Tuple[str, bool]] = []
        for text, substituted in pieces:
            if substituted:
                expanded.append((text, True))
                continue
            last = 0
            for match in pattern.finditer(text):
                if match.start() > last:
                    expanded.append((text[last : match.start()], False))
                expanded.append((value, True))
                last = match.end()
            if last < len(text):
                expanded.append((text[last:], False))
        pieces = expanded

    nodes: List[Node] = []
    for text, substituted in pieces:
        if substituted:
            nodes.extend(_split_lines(text, bold=True, placeholder=True))
        else:
            nodes.extend(_plain_nodes(text))
    return nodes


def _render_segments(
    content: str, segments: Sequence[ContentSegment], base_size: float
) -> List[Node]:
    nodes: List[Node] = []
    cursor = 0
    for segment in segments:
        if not segment.text:
            continue
        index = _locate(content, segment, cursor)
        if index == -1:
            continue
        if index > cursor:
            nodes.extend(_plain_nodes(content[cursor:index]))
        nodes.extend(_styled_nodes(segment.text, segment.formatting, base_size))
        cursor = index + len(segment.text)

    if cursor < len(content):
        nodes.extend(_plain_nodes(content[cursor:]))
    return nodes


def _locate(content: str, segment: ContentSegment, cursor: int) -> int:
    if segment.anchored:
        start, end = segment.start, segment.end
        if start >= cursor and content[start:end] == segment.text:
            return start
    return content.find(segment.text, cursor)


def _plain_nodes(text: str) -> List[Node]:
    return _split_lines(text)


def _styled_nodes(
    text: str, formatting: SegmentFormatting, base_size: float
) -> List[Node]:
    return _split_lines(
        text,
        bold=formatting.bold,
        italic=formatting.italic,
        color=formatting.color,
        background_color=formatting.background_color,
        font_size=font_size_px(formatting.font_size, base_size),
        font_family=formatting.font_family,
        alignment=formatting.alignment.value if formatting.alignment else None,
        list_type=formatting.list_type,
        shadow=formatting.shadow,
    )


def _split_lines(text: str, **style) -> List[Node]:
    nodes: List[Node] = []
    for idx, line in enumerate(text.split("\n")):
        if idx:
            nodes.append(LineBreak())
        if line:
            nodes.append(TextNode(text=line, **style))
    return nodes


# ===== rich conversion =====


def to_rich_text(
    nodes: Sequence[Node],
    formatting: Optional[StepFormatting] = None,
) -> Text:
    """Build a ``rich`` Text from nodes, applying whole-step formatting as base style."""
    base_style = _step_style(formatting)
    justify = formatting.text_align.value if formatting and formatting.text_align else None
    text = Text(style=base_style, justify=justify)
    for node in nodes:
        if isinstance(node, LineBreak):
            text.append("\n")
            continue
        text.append(node.text, style=_node_style(node))
    return text


def highlight_title(title: str, query: str) -> Text:
    text = Text(title)
    if query and query.strip():
        text.highlight_regex("(?i)" + re.escape(query.strip()), "black on yellow")
    return text


def _step_style(formatting: Optional[StepFormatting]) -> Style:
    if formatting is None:
        return Style()
    return Style(
        color=_safe_color(formatting.text_color),
        bold=formatting.bold or None,
        italic=formatting.italic or None,
    )


def _node_style(node: TextNode) -> Style:
    return Style(
        bold=node.bold or None,
        italic=node.italic or None,
        color=_safe_color(node.color),
        bgcolor=_safe_color(node.background_color),
    )


def _safe_color(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        Color.parse(value)
    except ColorParseError:
        return None
    return value
