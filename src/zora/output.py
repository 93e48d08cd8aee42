"""
User-facing build output with elapsed-time stamps.

Every line starts with the time since the process started (MM:SS.cc), so a
slow phase stands out when reading a build log:

    00:00.01 Zora Build System v0.1.0
    00:00.02 [1/2] Scanning sources...
    00:00.05       Translation units: 12
    00:01.80 [2/2] Compiling 3 of 12 units...
    00:01.81       [compile] src/main.c
    00:02.40       $ cc -c src/main.c -o target/debug/obj/src/main.c.o

Messages marked verbose_only are dropped unless set_verbose(True) was called.
Diagnostic logging for developers goes through the logging module instead.
"""

import sys
import time
from pathlib import Path
from types import TracebackType
from typing import Optional, Sequence, TextIO

DETAIL_INDENT = 6

_launch_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = False


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Reset the reference point for timestamps.

    The CLI calls this once per command. Logging before any call starts the
    clock implicitly.

    Args:
        output_stream: Where to write instead of sys.stdout (kept until replaced)
    """
    global _launch_time, _output_stream
    _launch_time = time.monotonic()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """
    Set verbose mode for build output.

    Args:
        verbose: If True, verbose_only messages are printed too.
    """
    global _verbose
    _verbose = verbose


def get_elapsed() -> float:
    """Seconds since init_timer()."""
    if _launch_time is None:
        init_timer()
    assert _launch_time is not None
    return time.monotonic() - _launch_time


def format_timestamp() -> str:
    """Render the elapsed time as MM:SS.cc."""
    minutes, seconds = divmod(get_elapsed(), 60)
    return f"{int(minutes):02d}:{seconds:05.2f}"


def _suppressed(verbose_only: bool) -> bool:
    return verbose_only and not _verbose


def _emit(text: str) -> None:
    stream = _output_stream or sys.stdout
    stream.write(f"{format_timestamp()} {text}\n")
    stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """Write a timestamped line."""
    if not _suppressed(verbose_only):
        _emit(message)


def log_phase(phase: int, total: int, message: str, verbose_only: bool = False) -> None:
    """
    Announce a build phase as ``[phase/total] message``.

    Args:
        phase: One-based index of the phase
        total: Number of phases in this command
        message: What the phase does
        verbose_only: Drop the line unless verbose mode is on
    """
    if not _suppressed(verbose_only):
        _emit(f"[{phase}/{total}] {message}")


def log_detail(message: str, indent: int = DETAIL_INDENT, verbose_only: bool = False) -> None:
    """Write an indented line that belongs to the preceding phase."""
    if not _suppressed(verbose_only):
        _emit(" " * indent + message)


def log_unit(unit: str, cached: bool = False, verbose_only: bool = True) -> None:
    """
    Report a translation unit as ``[compile] path`` or ``[cached] path``.

    Units are only listed in verbose mode by default; a normal build just
    prints the compile count for the phase.
    """
    if _suppressed(verbose_only):
        return
    tag = "cached" if cached else "compile"
    log_detail(f"[{tag}] {unit}")


def log_command(cmd: Sequence[str]) -> None:
    """Echo a tool invocation (verbose mode only)."""
    if _verbose:
        log_detail("$ " + " ".join(cmd))


def log_header(title: str, version: str) -> None:
    """Print the program banner followed by a blank line."""
    _emit(f"{title} v{version}")
    _emit("")


def log_build_complete(build_time: float, verbose_only: bool = False) -> None:
    """
    Print the total wall time of a build.

    Args:
        build_time: Seconds spent in BuildOrchestrator.build()
        verbose_only: Drop the lines unless verbose mode is on
    """
    if _suppressed(verbose_only):
        return
    _emit("")
    _emit(f"Build time: {build_time:.2f}s")


def log_error(message: str) -> None:
    _emit(f"ERROR: {message}")


def log_warning(message: str) -> None:
    _emit(f"WARNING: {message}")


def log_success(message: str) -> None:
    _emit(message)


def log_artifact_path(path: Path, verbose_only: bool = False) -> None:
    """Report where the executable or library was written."""
    log_detail(f"Artifact: {path}", verbose_only=verbose_only)


class TimedLogger:
    """
    Announce an operation on entry and its duration on a clean exit.

    Example:
        with TimedLogger("Scanning sources", phase=(1, 2)) as timed:
            units = scanner.scan()
            timed.detail(f"Translation units: {len(units)}")

    The closing ``Done (0.03s)`` line is verbose-only. Nothing is printed
    on exit if the block raised.
    """

    def __init__(self, operation: str, phase: Optional[tuple[int, int]] = None, verbose_only: bool = False):
        self.operation = operation
        self.phase = phase
        self.verbose_only = verbose_only
        self._entered_at = 0.0

    def __enter__(self) -> "TimedLogger":
        self._entered_at = time.monotonic()
        heading = f"{self.operation}..."
        if self.phase is None:
            log(heading, self.verbose_only)
        else:
            log_phase(*self.phase, heading, verbose_only=self.verbose_only)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        if exc_type is None:
            log_detail(f"Done ({time.monotonic() - self._entered_at:.2f}s)", verbose_only=True)

    def detail(self, message: str) -> None:
        log_detail(message, verbose_only=self.verbose_only)
