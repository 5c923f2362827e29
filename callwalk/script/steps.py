"""Step, button and product schema for attendance scripts."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


END_OF_SCRIPT = "fim"


class FontSize(Enum):
    SM = "sm"
    BASE = "base"
    LG = "lg"
    XL = "xl"
    XXL = "2xl"
    XXXL = "3xl"


class TextAlign(Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"
    JUSTIFY = "justify"


class ButtonVariant(Enum):
    DEFAULT = "default"
    PRIMARY = "primary"
    SECONDARY = "secondary"
    DESTRUCTIVE = "destructive"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _enum_value(enum_cls, raw: Any, default=None):
    if raw is None:
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        return default


@dataclass
class SegmentFormatting:
    """Inline style applied to one content segment."""

    bold: bool = False
    italic: bool = False
    color: Optional[str] = None
    background_color: Optional[str] = None
    font_size: Optional[FontSize] = None
    alignment: Optional[TextAlign] = None
    font_family: Optional[str] = None
    list_type: Optional[str] = None
    shadow: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.bold:
            data["bold"] = True
        if self.italic:
            data["italic"] = True
        if self.color:
            data["color"] = self.color
        if self.background_color:
            data["backgroundColor"] = self.background_color
        if self.font_size:
            data["fontSize"] = self.font_size.value
        if self.alignment:
            data["textAlign"] = self.alignment.value
        if self.font_family:
            data["fontFamily"] = self.font_family
        if self.list_type:
            data["listType"] = self.list_type
        if self.shadow:
            data["shadow"] = True
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SegmentFormatting":
        data = data or {}
        return cls(
            bold=bool(data.get("bold")),
            italic=bool(data.get("italic")),
            color=data.get("color") or None,
            background_color=data.get("backgroundColor") or None,
            font_size=_enum_value(FontSize, data.get("fontSize")),
            alignment=_enum_value(TextAlign, data.get("textAlign")),
            font_family=data.get("fontFamily") or None,
            list_type=data.get("listType") or None,
            shadow=bool(data.get("shadow")),
        )


@dataclass
class ContentSegment:
    """Styled sub-range of a step's content.

    ``start``/``end`` are offsets anchored against the content at save time;
    they are None until anchored or after the content changed underneath.
    """

    id: str
    text: str
    formatting: SegmentFormatting = field(default_factory=SegmentFormatting)
    start: Optional[int] = None
    end: Optional[int] = None

    @property
    def anchored(self) -> bool:
        return self.start is not None and self.end is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "formatting": self.formatting.to_dict(),
        }
        if self.anchored:
            data["start"] = self.start
            data["end"] = self.end
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentSegment":
        start = data.get("start")
        end = data.get("end")
        return cls(
            id=str(data.get("id") or ""),
            text=str(data.get("text") or ""),
            formatting=SegmentFormatting.from_dict(data.get("formatting")),
            start=start if isinstance(start, int) else None,
            end=end if isinstance(end, int) else None,
        )


@dataclass
class StepFormatting:
    """Whole-step style set in the admin editor."""

    text_color: Optional[str] = None
    bold: bool = False
    italic: bool = False
    text_align: Optional[TextAlign] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.text_color:
            data["textColor"] = self.text_color
        if self.bold:
            data["bold"] = True
        if self.italic:
            data["italic"] = True
        if self.text_align:
            data["textAlign"] = self.text_align.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepFormatting":
        return cls(
            text_color=data.get("textColor") or None,
            bold=bool(data.get("bold")),
            italic=bool(data.get("italic")),
            text_align=_enum_value(TextAlign, data.get("textAlign")),
        )


@dataclass
class Button:
    """Labeled transition out of a step. ``next_step_id=None`` ends the script."""

    id: str
    label: str
    next_step_id: Optional[str] = None
    order: int = 0
    primary: bool = False
    variant: ButtonVariant = ButtonVariant.DEFAULT

    @property
    def is_terminal(self) -> bool:
        return self.next_step_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "nextStepId": self.next_step_id,
            "order": self.order,
            "primary": self.primary,
            "variant": self.variant.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Button":
        return cls(
            id=str(data.get("id") or ""),
            label=str(data.get("label") or ""),
            next_step_id=data.get("nextStepId") or None,
            order=int(data.get("order") or 0),
            primary=bool(data.get("primary")),
            variant=_enum_value(ButtonVariant, data.get("variant"), ButtonVariant.DEFAULT),
        )


@dataclass
class Tabulation:
    """Recommended call-closing code."""

    id: str
    name: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "description": self.description}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tabulation":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
        )


@dataclass
class Alert:
    title: str
    message: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "createdAt": _format_time(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        return cls(
            title=str(data.get("title") or ""),
            message=str(data.get("message") or ""),
            created_at=_parse_time(data.get("createdAt")),
        )


@dataclass
class Step:
    """One screen of a script; a node in the traversal graph."""

    id: str
    title: str
    content: str
    buttons: List[Button] = field(default_factory=list)
    product_id: Optional[str] = None
    order: int = 0
    content_segments: List[ContentSegment] = field(default_factory=list)
    tabulations: List[Tabulation] = field(default_factory=list)
    alert: Optional[Alert] = None
    formatting: Optional[StepFormatting] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def sorted_buttons(self) -> List[Button]:
        return sorted(self.buttons, key=lambda button: button.order)

    def find_button(self, button_id: str) -> Optional[Button]:
        for button in self.buttons:
            if button.id == button_id:
                return button
        return None

    def copy(self, **changes: Any) -> "Step":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "order": self.order,
            "buttons": [button.to_dict() for button in self.buttons],
            "productId": self.product_id,
            "createdAt": _format_time(self.created_at),
            "updatedAt": _format_time(self.updated_at),
        }
        if self.content_segments:
            data["contentSegments"] = [segment.to_dict() for segment in self.content_segments]
        if self.tabulations:
            data["tabulations"] = [tab.to_dict() for tab in self.tabulations]
        if self.alert:
            data["alert"] = self.alert.to_dict()
        if self.formatting:
            data["formatting"] = self.formatting.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        alert = data.get("alert")
        formatting = data.get("formatting")
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            content=str(data.get("content") or ""),
            buttons=[Button.from_dict(item) for item in data.get("buttons") or []],
            product_id=data.get("productId") or None,
            order=int(data.get("order") or 0),
            content_segments=[
                ContentSegment.from_dict(item) for item in data.get("contentSegments") or []
            ],
            tabulations=[Tabulation.from_dict(item) for item in data.get("tabulations") or []],
            alert=Alert.from_dict(alert) if isinstance(alert, dict) else None,
            formatting=StepFormatting.from_dict(formatting) if isinstance(formatting, dict) else None,
            created_at=_parse_time(data.get("createdAt")),
            updated_at=_parse_time(data.get("updatedAt")),
        )


@dataclass
class Product:
    """A named script an operator selects to start a call."""

    id: str
    name: str
    script_id: Optional[str] = None
    category: str = "outros"
    is_active: bool = True
    attendance_types: List[str] = field(default_factory=list)
    person_types: List[str] = field(default_factory=list)
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "scriptId": self.script_id,
            "category": self.category,
            "isActive": self.is_active,
            "createdAt": _format_time(self.created_at),
        }
        if self.attendance_types:
            data["attendanceTypes"] = list(self.attendance_types)
        if self.person_types:
            data["personTypes"] = list(self.person_types)
        if self.description:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            script_id=data.get("scriptId") or None,
            category=str(data.get("category") or "outros"),
            is_active=bool(data.get("isActive", True)),
            attendance_types=list(data.get("attendanceTypes") or []),
            person_types=list(data.get("personTypes") or []),
            description=data.get("description") or None,
            created_at=_parse_time(data.get("createdAt")),
        )
