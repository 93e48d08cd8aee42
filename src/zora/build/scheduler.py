"""Parallel compile scheduler.

Runs one build invocation in five steps:
1. Partition translation units into stale and fresh against a cache snapshot
2. Submit one compile per stale unit to a bounded ThreadPoolExecutor
3. Barrier: wait for every compile future
4. If every compile succeeded, run exactly one link/archive over all objects
5. Stage cache entries for successfully compiled units and flush once

Each worker touches only its own task and blocks on its own compiler
subprocess. Outcomes reach the single collecting thread through their
Futures, and only that thread mutates the report and the cache.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Optional

from ..errors import ToolchainInvocationError
from ..interrupt_utils import handle_keyboard_interrupt_properly
from ..output import log_detail, log_unit
from .build_context import BuildContext
from .callbacks import NullCallback, ProgressCallback
from .dependency_graph import DependencyGraph
from .fingerprint_cache import ARTIFACT_ARCHIVE_MEMBER, ARTIFACT_OBJECT, FingerprintCache
from .models import BuildReport, CompileTask, Diagnostic, Severity, UnitState
from .toolchain import CompileOutcome, Toolchain

logger = logging.getLogger(__name__)


def _first_error(diagnostics: list[Diagnostic]) -> str:
    for diagnostic in diagnostics:
        if diagnostic.is_error:
            return diagnostic.format().splitlines()[0]
    return ""


def _warning_detail(diagnostics: list[Diagnostic]) -> str:
    count = sum(1 for d in diagnostics if not d.is_error)
    if not count:
        return ""
    return f"{count} warning" + ("s" if count != 1 else "")


class ParallelScheduler:
    """Compiles stale units in parallel, then links once.

    Usage:
        scheduler = ParallelScheduler(toolchain, callback)
        report = scheduler.build(graph, cache, context)
    """

    def __init__(self, toolchain: Toolchain, callback: Optional[ProgressCallback] = None):
        self.toolchain = toolchain
        self.callback: ProgressCallback = callback if callback is not None else NullCallback()
        self._cancelled = threading.Event()

    def partition(
        self, graph: DependencyGraph, cache: FingerprintCache, context: BuildContext
    ) -> tuple[list[CompileTask], list[CompileTask]]:
        """Split units into (stale, fresh) tasks, deciding each state once."""
        stale: list[CompileTask] = []
        fresh: list[CompileTask] = []
        for unit in graph.translation_units:
            fingerprint = cache.fingerprint(unit, context.signature)
            task = CompileTask(unit=unit, object_path=context.object_path(unit), fingerprint=fingerprint)
            if cache.is_stale(unit, context.signature, fingerprint=fingerprint, expected_artifact=task.object_path):
                task.state = UnitState.STALE
                stale.append(task)
            else:
                task.state = UnitState.FRESH
                fresh.append(task)
            self.callback.on_unit(unit.path, task.state, "")
        return stale, fresh

    def build(self, graph: DependencyGraph, cache: FingerprintCache, context: BuildContext) -> BuildReport:
        """Run one build invocation.

        Returns:
            BuildReport with every unit's outcome and the link result

        Raises:
            ToolchainInvocationError: If a tool cannot be started (nothing is recorded)
            KeyboardInterrupt: Re-raised after in-flight compiles are terminated
        """
        start_time = time.monotonic()
        self._cancelled.clear()
        self.toolchain.clear_cancellation()
        report = BuildReport(project=context.project.name, profile=context.profile.value)

        stale, fresh = self.partition(graph, cache, context)
        report.tasks = sorted(stale + fresh, key=lambda t: t.unit)
        logger.info(f"{len(stale)} stale, {len(fresh)} fresh of {len(report.tasks)} units")

        try:
            self._compile_all(stale, context)

            for task in fresh:
                task.state = UnitState.COMPILED
                task.cached = True
                log_unit(task.unit.path, cached=True)
                self.callback.on_unit(task.unit.path, UnitState.COMPILED, "cached")

            artifact_kind = ARTIFACT_ARCHIVE_MEMBER if context.project.kind.is_library else ARTIFACT_OBJECT
            for task in stale:
                if task.state == UnitState.COMPILED and task.object_path.exists():
                    cache.record(task.unit, task.fingerprint, task.object_path, artifact_kind)

            if report.failed_tasks:
                logger.info(f"Skipping link: {len(report.failed_tasks)} unit(s) failed")
                log_detail(f"{len(report.failed_tasks)} unit(s) failed; skipping link")
            else:
                self._link(report, context)
        except BaseException:
            cache.discard_staged()
            raise

        cache.flush(live_units=[u.path for u in graph.translation_units])
        report.total_elapsed = time.monotonic() - start_time
        return report

    def _compile_all(self, stale: list[CompileTask], context: BuildContext) -> None:
        if not stale:
            return

        workers = max(1, min(context.job_limit, len(stale)))
        logger.debug(f"Compiling {len(stale)} units with {workers} workers")
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="zora-compile")
        futures: dict[Future[CompileOutcome], CompileTask] = {}
        interrupted = False
        try:
            for task in stale:
                futures[executor.submit(self._compile_one, task, context)] = task

            for future in as_completed(futures):
                task = futures[future]
                try:
                    outcome = future.result()
                except (KeyboardInterrupt, ToolchainInvocationError):
                    raise
                except Exception as e:
                    logger.error(f"Unexpected error compiling {task.unit.path}: {e}", exc_info=True)
                    task.fail([Diagnostic(Severity.ERROR, str(e), file=task.unit.path)])
                    self.callback.on_unit(task.unit.path, UnitState.FAILED, str(e))
                    continue
                self._apply_outcome(task, outcome)
        except BaseException:
            interrupted = True
            self._cancelled.set()
            for future in futures:
                future.cancel()
            self.toolchain.terminate_running()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        finally:
            if not interrupted:
                executor.shutdown(wait=True)

    def _compile_one(self, task: CompileTask, context: BuildContext) -> CompileOutcome:
        """Worker body: runs in a pool thread."""
        if self._cancelled.is_set():
            return CompileOutcome(False, None, [Diagnostic(Severity.ERROR, "build cancelled", file=task.unit.path)])
        try:
            task.mark_started()
            self.callback.on_unit(task.unit.path, UnitState.COMPILING, "")
            log_unit(task.unit.path, cached=False)
            return self.toolchain.compile(task.unit, context.signature, task.object_path)
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)
            raise

    def _apply_outcome(self, task: CompileTask, outcome: CompileOutcome) -> None:
        task.command = list(outcome.command)
        if outcome.success:
            task.diagnostics = list(outcome.diagnostics)
            task.state = UnitState.COMPILED
            task.update_elapsed()
            self.callback.on_unit(task.unit.path, UnitState.COMPILED, _warning_detail(task.diagnostics))
        else:
            diagnostics = list(outcome.diagnostics)
            if not any(d.is_error for d in diagnostics):
                diagnostics.append(Diagnostic(Severity.ERROR, "compilation failed", file=task.unit.path))
            task.fail(diagnostics)
            logger.debug(f"Compile failed: {task.unit.path}")
            self.callback.on_unit(task.unit.path, UnitState.FAILED, _first_error(task.diagnostics))

    def _link(self, report: BuildReport, context: BuildContext) -> None:
        objects = [task.object_path for task in sorted(report.tasks, key=lambda t: t.unit)]
        report.link_attempted = True
        self.callback.on_link(UnitState.COMPILING, context.artifact_path.name)

        outcome = self.toolchain.link(objects, context.project.kind, context.artifact_path, context.link_signature)

        report.link_command = list(outcome.command)
        report.link_diagnostics = list(outcome.diagnostics)
        if outcome.success:
            report.artifact = outcome.artifact
            self.callback.on_link(UnitState.COMPILED, str(outcome.artifact))
        else:
            if not any(d.is_error for d in report.link_diagnostics):
                report.link_diagnostics.append(Diagnostic(Severity.ERROR, "link failed"))
            logger.debug(f"Link failed for {context.project.name}")
            self.callback.on_link(UnitState.FAILED, _first_error(report.link_diagnostics))
