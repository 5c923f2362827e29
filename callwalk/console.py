from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Callable, List, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from callwalk.errors import MissingStepError, NavigationError
from callwalk.script.annotations import (
    ActiveAlert,
    TabulationPulse,
    active_alert,
    recommended_tabulations,
)
from callwalk.script.navigation import TERMINAL, NavigationController
from callwalk.script.renderer import (
    DEFAULT_TEXT_SIZE,
    MAX_TEXT_SIZE,
    MIN_TEXT_SIZE,
    Placeholders,
    base_font_size,
    highlight_title,
    render,
    to_rich_text,
)
from callwalk.script.steps import Product, Step, Tabulation
from callwalk.store.repository import StepRepository
from callwalk.store.sync import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

DEAD_END_MESSAGE = "Script data unavailable, contact an administrator."
TEXT_SIZE_STEP = 10


@dataclass
class ConsoleState:
    text_size: int = DEFAULT_TEXT_SIZE
    status_message: str = ""
    search_query: str = ""
    search_results: List[Step] = field(default_factory=list)
    stale: bool = False


# ===== Rendering =====


def render_header(product: Product, step_number: int, text_size: int) -> Panel:
    title = Text()
    title.append("Call Script", style="bold cyan")
    title.append("  |  ", style="dim")
    title.append(product.name, style="bold yellow")
    title.append("  |  ", style="dim")
    title.append(f"Screen {step_number}", style="green")
    title.append("  |  ", style="dim")
    title.append(f"Text {text_size}%", style="dim")
    return Panel(title, style="bold")


def render_step_panel(step: Step, placeholders: Placeholders, text_size: int) -> Panel:
    nodes = render(
        step.content,
        step.content_segments,
        placeholders,
        base_size=base_font_size(text_size),
    )
    body = to_rich_text(nodes, step.formatting)
    if not body.plain.strip():
        body = Text("(no script text)", style="dim")
    return Panel(body, title=Text(step.title), border_style="green", padding=(0, 1))


def render_buttons(step: Step, can_go_back: bool) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 1))
    for index, button in enumerate(step.sorted_buttons(), start=1):
        style = "bold cyan" if button.primary else "cyan"
        label = Text(button.label or "(unnamed)", style=style)
        if button.is_terminal:
            label.append("  [end]", style="dim")
        table.add_row(Text(f"[{index}]", style="bold"), label)
    if can_go_back:
        table.add_row(Text("[b]", style="bold"), Text("Back", style="dim"))
    return table


def render_alert(alert: ActiveAlert) -> Panel:
    return Panel(Text(alert.message), title=Text(alert.title), border_style="bold red")


def render_tabulations(tabulations: List[Tabulation], pulsing: bool = False) -> Panel:
    table = Table(show_header=False, box=None, padding=(0, 1))
    for tab in tabulations:
        table.add_row(Text(tab.name, style="bold magenta"), Text(tab.description, style="dim"))
    border = "bold magenta" if pulsing else "magenta"
    title = "Recommended tabulation" + (" *" if pulsing else "")
    return Panel(table, title=title, border_style=border)


def render_dead_end(step_id: str) -> Panel:
    text = Text(DEAD_END_MESSAGE, style="bold")
    text.append(f"\nMissing step: {step_id}", style="dim")
    return Panel(text, title="Unavailable", border_style="red")


def render_terminal() -> Panel:
    return Panel(
        Text("End of script. Press [b] to go back or [r] to restart.", style="bold"),
        title="Finished",
        border_style="blue",
    )


def render_search_results(query: str, results: List[Step]) -> Panel:
    if not results:
        return Panel(Text("No results", style="dim"), title=Text(f"Search: {query}"))
    table = Table(show_header=False, box=None, padding=(0, 1))
    for index, step in enumerate(results, start=1):
        table.add_row(Text(f"[s{index}]", style="bold"), highlight_title(step.title, query))
    return Panel(table, title=Text(f"Search: {query}"), border_style="bright_cyan")


def render_footer(status_message: str = "") -> Text:
    shortcuts = Text()
    shortcuts.append(" [1-9] ", style="bold")
    shortcuts.append("Choose  ", style="dim")
    shortcuts.append("[b] ", style="bold")
    shortcuts.append("Back  ", style="dim")
    shortcuts.append("[/text] ", style="bold")
    shortcuts.append("Search  ", style="dim")
    shortcuts.append("[+/-] ", style="bold")
    shortcuts.append("Text size  ", style="dim")
    shortcuts.append("[r] ", style="bold")
    shortcuts.append("Restart  ", style="dim")
    shortcuts.append("[q] ", style="bold")
    shortcuts.append("Quit", style="dim")
    if status_message:
        shortcuts.append("  |  ", style="dim")
        shortcuts.append(status_message, style="yellow")
    return shortcuts


# ===== Session =====


class OperatorConsole:
    """Line-driven operator screen over a ``NavigationController``."""

    def __init__(
        self,
        repository: StepRepository,
        product: Product,
        placeholders: Optional[Placeholders] = None,
        console: Optional[Console] = None,
        text_size: int = DEFAULT_TEXT_SIZE,
        history_limit: Optional[int] = None,
        input_fn: Optional[Callable[[str], str]] = None,
    ):
        self.repository = repository
        self.product = product
        self.placeholders = placeholders or Placeholders()
        self.console = console or Console()
        self.navigation = NavigationController(repository, history_limit=history_limit)
        self.pulse = TabulationPulse(repository.scheduler)
        self.state = ConsoleState(text_size=max(MIN_TEXT_SIZE, min(MAX_TEXT_SIZE, text_size)))
        self._input = input_fn or self.console.input
        self._unsubscribe = repository.channel.subscribe(
            self._on_change, kinds=[ChangeKind.REMOTE, ChangeKind.IMPORT]
        )

    def start(self) -> None:
        self.navigation.start(self.product.id)
        self._arrive()

    def close(self) -> None:
        self.pulse.cancel()
        self._unsubscribe()
        self.navigation.reset()

    def run(self) -> None:
        self.start()
        try:
            while True:
                self.repository.pump()
                self.repository.poll_remote()
                self.console.print(self.render())
                command = self._input("> ").strip()
                if self.handle(command) == "quit":
                    break
        finally:
            self.close()

    def render(self) -> Group:
        screen = len(self.navigation.state.back_stack) + 1
        parts = [render_header(self.product, screen, self.state.text_size)]
        if self.state.search_query:
            parts.append(render_search_results(self.state.search_query, self.state.search_results))

        current = self.navigation.current_step()
        if current is TERMINAL:
            parts.append(render_terminal())
        elif isinstance(current, MissingStepError):
            parts.append(render_dead_end(current.step_id))
            if self.navigation.can_go_back:
                parts.append(Text(" [b] Back", style="dim"))
        else:
            alert = active_alert(current)
            if alert is not None:
                parts.append(render_alert(alert))
            parts.append(render_step_panel(current, self.placeholders, self.state.text_size))
            parts.append(render_buttons(current, self.navigation.can_go_back))
            tabulations = recommended_tabulations(current)
            if tabulations:
                parts.append(render_tabulations(tabulations, self.pulse.is_pulsing))
        if self.state.stale:
            parts.append(Text("Script updated elsewhere; screen refreshed.", style="yellow"))
            self.state.stale = False
        parts.append(render_footer(self.state.status_message))
        return Group(*parts)

    # ===== Input Handling =====

    def handle(self, command: str) -> Optional[str]:
        self.state.status_message = ""
        if not command:
            return None
        lowered = command.lower()
        if lowered in ("q", "quit"):
            return "quit"
        if lowered == "b":
            if self.navigation.go_back() is None:
                self.state.status_message = "Nothing to go back to"
            else:
                self._arrive()
        elif lowered == "r":
            self.start()
        elif lowered == "+":
            self._adjust_text_size(TEXT_SIZE_STEP)
        elif lowered == "-":
            self._adjust_text_size(-TEXT_SIZE_STEP)
        elif command.startswith("/"):
            self._search(command[1:])
        elif lowered.startswith("s") and lowered[1:].isdigit():
            self._jump_to_result(int(lowered[1:]))
        elif lowered.isdigit():
            self._choose(int(lowered))
        else:
            self.state.status_message = f"Unknown command: {command}"
        return None

    def _choose(self, number: int) -> None:
        current = self.navigation.current_step()
        if not isinstance(current, Step):
            self.state.status_message = "No options on this screen"
            return
        buttons = current.sorted_buttons()
        if number < 1 or number > len(buttons):
            self.state.status_message = f"No option {number}"
            return
        try:
            self.navigation.advance(buttons[number - 1].id)
        except NavigationError as exc:
            self.state.status_message = str(exc)
            return
        self._arrive()

    def _search(self, query: str) -> None:
        self.state.search_query = query.strip()
        if not self.state.search_query:
            self.state.search_results = []
            return
        self.state.search_results = self.repository.search_steps(self.product.id, query)

    def _jump_to_result(self, number: int) -> None:
        results = self.state.search_results
        if number < 1 or number > len(results):
            self.state.status_message = f"No search result {number}"
            return
        self.navigation.jump_to(results[number - 1].id)
        self.state.search_query = ""
        self.state.search_results = []
        self._arrive()

    def _adjust_text_size(self, delta: int) -> None:
        self.state.text_size = max(MIN_TEXT_SIZE, min(MAX_TEXT_SIZE, self.state.text_size + delta))

    def _arrive(self) -> None:
        current = self.navigation.current_step()
        self.pulse.arrive(current if isinstance(current, Step) else None)

    def _on_change(self, event: ChangeEvent) -> None:
        product = self.repository.get_product(self.product.id)
        if product is not None:
            self.product = product
        self.state.stale = event.kind is ChangeKind.REMOTE
        logger.debug("Console refreshed after %s change", event.kind.value)


def run_console(
    repository: StepRepository,
    product: Product,
    placeholders: Optional[Placeholders] = None,
    console: Optional[Console] = None,
    text_size: int = DEFAULT_TEXT_SIZE,
    history_limit: Optional[int] = None,
) -> None:
    operator = OperatorConsole(
        repository,
        product,
        placeholders=placeholders,
        console=console,
        text_size=text_size,
        history_limit=history_limit,
    )
    operator.run()
