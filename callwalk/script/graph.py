"""Integrity checks over a product's script graph.

Links are never validated on write; these checks report what an operator
would run into at traversal time.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from .steps import Step


@dataclass
class GraphIssue:
    kind: str
    step_id: str
    description: str


@dataclass
class GraphReport:
    product_id: str
    start_id: Optional[str]
    step_count: int = 0
    issues: List[GraphIssue] = field(default_factory=list)
    reachable: Set[str] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return not self.issues


def check_graph(product_id: str, start_id: Optional[str], steps: Sequence[Step]) -> GraphReport:
    """Report dangling buttons, a missing first step and unreachable steps."""
    by_id: Dict[str, Step] = {step.id: step for step in steps}
    report = GraphReport(product_id=product_id, start_id=start_id, step_count=len(by_id))

    if not start_id or start_id not in by_id:
        report.issues.append(
            GraphIssue(
                kind="missing-start",
                step_id=start_id or "",
                description="First step does not exist",
            )
        )

    for step in steps:
        for button in step.sorted_buttons():
            target = button.next_step_id
            if target is not None and target not in by_id:
                report.issues.append(
                    GraphIssue(
                        kind="dangling",
                        step_id=step.id,
                        description=f'Button "{button.label}" points to missing step {target}',
                    )
                )

    report.reachable = reachable_from(start_id, by_id)
    for step in steps:
        if report.reachable and step.id not in report.reachable:
            report.issues.append(
                GraphIssue(
                    kind="unreachable",
                    step_id=step.id,
                    description="Not reachable from the first step",
                )
            )
    return report


def reachable_from(start_id: Optional[str], by_id: Dict[str, Step]) -> Set[str]:
    if not start_id or start_id not in by_id:
        return set()
    seen = {start_id}
    queue = deque([start_id])
    while queue:
        step = by_id[queue.popleft()]
        for button in step.buttons:
            target = button.next_step_id
            # Cycles are legal.
            if target in by_id and target not in seen:
                seen.add(target)
                queue.append(target)
    return seen
