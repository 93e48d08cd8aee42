"""Rich-based live compile table for the parallel scheduler.

Renders one line per translation unit that transitions through:

    Waiting -> (spinner) Compiling -> Compiled (checkmark) 0.4s
                                   -> Failed (cross) main.c:3:5: expected ';'
    Cached (units reused from the fingerprint cache)

Thread-safe: scheduler worker threads call on_unit() concurrently while
Rich's Live refresh thread renders.
"""

import threading
import time
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .models import UnitState

# Braille spinner frames for the COMPILING state
_SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

_LINK_ROW = "<link>"


class _UnitDisplayState:
    __slots__ = ("name", "state", "detail", "elapsed", "start_time", "cached")

    def __init__(self, name: str) -> None:
        self.name = name
        self.state = UnitState.UNSEEN
        self.detail: str = ""
        self.elapsed: float = 0.0
        self.start_time: float | None = None
        self.cached = False


class BuildProgressDisplay:
    """Live per-unit compile table using Rich.

    Implements ProgressCallback. Use as a context manager around
    ParallelScheduler.build().

    Args:
        console: Rich Console instance for rendering. If None, creates a new one.
        title: Header line (e.g. "hello [debug]").
        refresh_per_second: Display refresh rate.
    """

    def __init__(self, console: Console | None, title: str, refresh_per_second: int = 10) -> None:
        self._console = console if console is not None else Console()
        self._title = title
        self._refresh_per_second = refresh_per_second
        self._states: dict[str, _UnitDisplayState] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()
        self._live: Live | None = None

    def _state_for(self, name: str) -> _UnitDisplayState:
        state = self._states.get(name)
        if state is None:
            state = _UnitDisplayState(name)
            self._states[name] = state
            self._order.append(name)
        return state

    def on_unit(self, unit: str, state: UnitState, detail: str) -> None:
        with self._lock:
            current = self._state_for(unit)
            if state == UnitState.COMPILING:
                current.start_time = time.monotonic()
            elif state == UnitState.FRESH:
                current.cached = True
            current.state = state
            current.detail = detail
            if current.start_time is not None:
                current.elapsed = time.monotonic() - current.start_time

    def on_link(self, state: UnitState, detail: str) -> None:
        self.on_unit(_LINK_ROW, state, detail)

    def start(self) -> None:
        self._live = Live(
            self._render_display(),
            console=self._console,
            refresh_per_second=self._refresh_per_second,
            transient=False,
        )
        self._live.start()

    def stop(self) -> None:
        if self._live is not None:
            self._live.update(self._render_display())
            self._live.stop()
            self._live = None

    def update(self) -> None:
        if self._live is not None:
            self._live.update(self._render_display())

    def _render_display(self) -> Group:
        header = Text(f"\nCompiling {self._title}...\n", style="bold")
        return Group(header, self._render_table(), self._render_footer())

    def _render_table(self) -> Table:
        table = Table(show_header=False, show_edge=False, show_lines=False, box=None, padding=(0, 1), expand=False)
        table.add_column("Unit", style="bold", no_wrap=True, min_width=28)
        table.add_column("State", no_wrap=True, min_width=10)
        table.add_column("Status", no_wrap=True, min_width=30)

        with self._lock:
            for name in self._order:
                state = self._states[name]
                label = "link" if name == _LINK_ROW else name
                table.add_row(Text(label, style=self._name_style(state)), self._format_state(state), self._format_status(state))
        return table

    def _render_footer(self) -> Text:
        with self._lock:
            units = [s for n, s in self._states.items() if n != _LINK_ROW]
            compiled = sum(1 for s in units if s.state == UnitState.COMPILED and not s.cached)
            cached = sum(1 for s in units if s.cached)
            failed = sum(1 for s in units if s.state == UnitState.FAILED)
            active = sum(1 for s in units if s.state == UnitState.COMPILING)

        parts = [f"{len(units)} units"]
        if active:
            parts.append(f"{active} compiling")
        if compiled:
            parts.append(f"{compiled} compiled")
        if cached:
            parts.append(f"{cached} cached")
        if failed:
            parts.append(f"{failed} failed")
        return Text(f"\n  {', '.join(parts)}", style="dim")

    @staticmethod
    def _name_style(state: _UnitDisplayState) -> str:
        return {
            UnitState.COMPILED: "green",
            UnitState.FAILED: "red",
            UnitState.COMPILING: "bold cyan",
        }.get(state.state, "dim")

    @staticmethod
    def _format_state(state: _UnitDisplayState) -> Text:
        labels = {
            UnitState.UNSEEN: ("Waiting", "dim"),
            UnitState.STALE: ("Queued", "dim"),
            UnitState.FRESH: ("Cached", "dim green"),
            UnitState.COMPILING: ("Compiling", "cyan"),
            UnitState.COMPILED: ("Compiled", "green"),
            UnitState.FAILED: ("Failed", "red bold"),
        }
        if state.cached and state.state == UnitState.COMPILED:
            return Text("Cached", style="dim green")
        label, style = labels.get(state.state, ("Unknown", "dim"))
        return Text(label, style=style)

    @staticmethod
    def _format_status(state: _UnitDisplayState) -> Text:
        if state.state == UnitState.COMPILING:
            spinner = _SPINNER_FRAMES[int(time.monotonic() * 8) % len(_SPINNER_FRAMES)]
            return Text(f"{spinner} {state.detail}", style="cyan")
        if state.state == UnitState.COMPILED:
            elapsed = f"{state.elapsed:.1f}s" if state.elapsed > 0 else ""
            suffix = f"  {state.detail}" if state.detail else ""
            return Text(f"✓ {elapsed}{suffix}", style="green")
        if state.state == UnitState.FAILED:
            return Text(f"✗ {state.detail or 'Error'}", style="red")
        return Text("")

    def get_snapshot(self) -> list[dict[str, Any]]:
        """Current display states, in first-seen order."""
        with self._lock:
            return [
                {"name": s.name, "state": s.state, "detail": s.detail, "elapsed": s.elapsed, "cached": s.cached}
                for s in (self._states[n] for n in self._order)
            ]

    def __enter__(self) -> "BuildProgressDisplay":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
