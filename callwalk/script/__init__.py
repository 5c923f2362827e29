"""Script graph engine: steps, rendering, traversal and annotations."""

from .steps import (
    END_OF_SCRIPT,
    Alert,
    Button,
    ButtonVariant,
    ContentSegment,
    FontSize,
    Product,
    SegmentFormatting,
    Step,
    StepFormatting,
    Tabulation,
    TextAlign,
)
from .renderer import LineBreak, Placeholders, TextNode, render
from .navigation import TERMINAL, NavigationController, NavigationState, StepSource, Terminal
from .annotations import ActiveAlert, TabulationPulse, active_alert, build_alert
from .graph import GraphIssue, GraphReport, check_graph

__all__ = [
    "END_OF_SCRIPT",
    "ActiveAlert",
    "Alert",
    "Button",
    "ButtonVariant",
    "ContentSegment",
    "FontSize",
    "GraphIssue",
    "GraphReport",
    "LineBreak",
    "NavigationController",
    "NavigationState",
    "Placeholders",
    "Product",
    "SegmentFormatting",
    "Step",
    "StepFormatting",
    "StepSource",
    "TERMINAL",
    "TabulationPulse",
    "Tabulation",
    "Terminal",
    "TextAlign",
    "TextNode",
    "active_alert",
    "build_alert",
    "check_graph",
    "render",
]
