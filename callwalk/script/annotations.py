"""Side information shown next to a step: the alert banner and tabulation hints."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from .steps import Alert, Step, Tabulation, utcnow

if TYPE_CHECKING:  # pragma: no cover
    from callwalk.store.sync import Scheduler, TimerHandle

DEFAULT_ALERT_TITLE = "Atenção"
PULSE_SECONDS = 3.0


@dataclass(frozen=True)
class ActiveAlert:
    title: str
    message: str


def active_alert(step: Optional[Step]) -> Optional[ActiveAlert]:
    """The alert to display for ``step``, or None when it has no message."""
    if step is None or step.alert is None:
        return None
    message = (step.alert.message or "").strip()
    if not message:
        return None
    title = (step.alert.title or "").strip() or DEFAULT_ALERT_TITLE
    return ActiveAlert(title=title, message=message)


def build_alert(title: str, message: str, now: Optional[datetime] = None) -> Optional[Alert]:
    """Editor save rule: both fields must be non-empty, otherwise the alert is removed."""
    title = (title or "").strip()
    message = (message or "").strip()
    if not title or not message:
        return None
    return Alert(title=title, message=message, created_at=now or utcnow())


def recommended_tabulations(step: Optional[Step]) -> List[Tabulation]:
    if step is None:
        return []
    return list(step.tabulations)


class TabulationPulse:
    """Highlights the tabulation hints for a few seconds after arriving on a step."""

    def __init__(self, scheduler: "Scheduler", duration: float = PULSE_SECONDS):
        self.scheduler = scheduler
        self.duration = duration
        self.step_id: Optional[str] = None
        self._handle: Optional["TimerHandle"] = None

    @property
    def is_pulsing(self) -> bool:
        return self._handle is not None

    def arrive(self, step: Optional[Step]) -> bool:
        self.cancel()
        if step is None or not step.tabulations:
            return False
        self.step_id = step.id
        self._handle = self.scheduler.call_later(self.duration, self._expire)
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self.step_id = None

    def _expire(self) -> None:
        self._handle = None
        self.step_id = None
