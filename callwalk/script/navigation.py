"""Operator traversal of a script graph.

The controller is a small state machine: the current position is either a
step id or ``TERMINAL``; every button click pushes the current step onto the
back stack. Cycles are allowed, so nothing here assumes progress.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Union

from callwalk.errors import MissingStepError, NavigationError, ProductNotFoundError
from .steps import Product, Step


class Terminal:
    """End of script: a button with no next step was clicked."""

    _instance: Optional["Terminal"] = None

    def __new__(cls) -> "Terminal":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "TERMINAL"


TERMINAL = Terminal()

Position = Union[str, Terminal]


class StepSource:
    """Interface for step/product lookup used by the controller."""

    def get_step(self, step_id: str, product_id: Optional[str] = None) -> Optional[Step]:
        raise NotImplementedError

    def get_product(self, product_id: str) -> Optional[Product]:
        raise NotImplementedError

    def find_product(self, key: str) -> Optional[Product]:
        """Look a product up by id or display name."""
        return self.get_product(key)


@dataclass
class NavigationState:
    """Session-only traversal state. Never persisted."""

    product_id: str
    current: Position
    back_stack: Deque[str] = field(default_factory=deque)

    @property
    def history(self) -> List[str]:
        return list(self.back_stack)


class NavigationController:
    def __init__(self, source: StepSource, history_limit: Optional[int] = None):
        if history_limit is not None and history_limit < 1:
            raise ValueError("history_limit must be positive")
        self.source = source
        self.history_limit = history_limit
        self.state: Optional[NavigationState] = None

    # ===== Transitions =====

    def start(self, product_id: str) -> str:
        product = self.source.find_product(product_id)
        if product is None or not product.script_id:
            raise ProductNotFoundError(product_id)
        self.state = NavigationState(
            product_id=product.id,
            current=product.script_id,
            back_stack=deque(maxlen=self.history_limit),
        )
        return product.script_id

    def advance(self, button_id: str) -> Position:
        state = self._require_state()
        if state.current is TERMINAL:
            raise NavigationError("Cannot advance past the end of the script")
        step = self.resolve(state.current)
        if isinstance(step, MissingStepError):
            raise NavigationError(f"Current step {state.current} is unavailable")
        button = step.find_button(button_id)
        if button is None:
            raise NavigationError(f"Button {button_id} is not on step {step.id}")

        state.back_stack.append(step.id)
        state.current = TERMINAL if button.next_step_id is None else button.next_step_id
        return state.current

    def go_back(self) -> Optional[str]:
        """Return to the previous step; None when there is nothing to go back to."""
        state = self._require_state()
        if not state.back_stack:
            return None
        state.current = state.back_stack.pop()
        return state.current

    def jump_to(self, step_id: str) -> str:
        """Move to an arbitrary step (title search), recording history."""
        state = self._require_state()
        if state.current is not TERMINAL:
            state.back_stack.append(state.current)
        state.current = step_id
        return step_id

    def reset(self) -> None:
        self.state = None

    # ===== Queries =====

    @property
    def active(self) -> bool:
        return self.state is not None

    @property
    def current(self) -> Position:
        return self._require_state().current

    @property
    def history(self) -> List[str]:
        return self._require_state().history

    @property
    def can_go_back(self) -> bool:
        return self.state is not None and bool(self.state.back_stack)

    @property
    def at_terminal(self) -> bool:
        return self.state is not None and self.state.current is TERMINAL

    @property
    def at_dead_end(self) -> bool:
        if self.state is None or self.state.current is TERMINAL:
            return False
        return isinstance(self.resolve(self.state.current), MissingStepError)

    def resolve(self, step_id: str) -> Union[Step, MissingStepError]:
        """Look up a step; an unknown id is returned as a MissingStepError, not raised."""
        product_id = self.state.product_id if self.state else None
        step = None
        if product_id is not None:
            step = self.source.get_step(step_id, product_id)
        if step is None:
            step = self.source.get_step(step_id)
            if step is not None and step.product_id not in (None, product_id):
                step = None
        if step is None:
            return MissingStepError(step_id, product_id)
        return step

    def current_step(self) -> Union[Step, MissingStepError, Terminal]:
        state = self._require_state()
        if state.current is TERMINAL:
            return TERMINAL
        return self.resolve(state.current)

    def _require_state(self) -> NavigationState:
        if self.state is None:
            raise NavigationError("No active session; call start() first")
        return self.state
