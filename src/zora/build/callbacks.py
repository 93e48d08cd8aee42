"""Progress callback protocol for the parallel scheduler.

Defines the callback interface the scheduler uses to report per-unit state
transitions and the link step to a display layer.
"""

from typing import Protocol, runtime_checkable

from .models import UnitState


@runtime_checkable
class ProgressCallback(Protocol):
    """Protocol for receiving progress updates from the scheduler.

    on_unit() is called from worker threads as well as the scheduling
    thread, so implementations must be thread-safe.
    """

    def on_unit(self, unit: str, state: UnitState, detail: str) -> None:
        """Called when a translation unit changes state.

        Args:
            unit: Project-relative unit path (e.g. "src/main.c").
            state: The state the unit just entered.
            detail: Human-readable status detail (e.g. "2 warnings", first error line).
        """
        ...

    def on_link(self, state: UnitState, detail: str) -> None:
        """Called when the link/archive step starts (COMPILING) and ends (COMPILED / FAILED)."""
        ...


class NullCallback:
    """No-op callback implementation for testing and non-interactive use."""

    def on_unit(self, unit: str, state: UnitState, detail: str) -> None:
        pass

    def on_link(self, state: UnitState, detail: str) -> None:
        pass

