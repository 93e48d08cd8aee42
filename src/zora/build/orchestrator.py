"""Build orchestrator for C/C++ projects.

Wires the scanner, dependency graph, fingerprint cache, scheduler and
toolchain together for one project directory, and exposes the operations
the CLI drives: build, run, check, clean, info and cache maintenance.

Example:
    orchestrator = BuildOrchestrator(Path("hello"))
    report = orchestrator.build("release", job_limit=8)
    report.raise_for_status()
"""

import logging
import shutil
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from ..config.paths import get_build_root, get_cache_file, get_default_jobs, get_object_dir, get_target_root
from ..config.project_config import FeatureSelection, Project, load_project
from ..errors import ConfigurationError
from ..output import TimedLogger, log_artifact_path, log_detail, log_error, log_phase, log_success, log_warning, set_verbose
from ..subprocess_utils import safe_run
from .build_context import BuildContext, artifact_file_name
from .build_profiles import BuildProfile, print_profile_banner
from .callbacks import ProgressCallback
from .dependency_graph import DependencyGraph
from .fingerprint_cache import CacheStorage, FingerprintCache, JsonFileStorage
from .models import BuildReport, CacheStats, Diagnostic
from .scheduler import ParallelScheduler
from .source_scanner import ScanResult, SourceScanner
from .toolchain import GccToolchain, Toolchain

logger = logging.getLogger(__name__)

StorageFactory = Callable[[str], CacheStorage]


def _parse_profile(profile: "str | BuildProfile") -> BuildProfile:
    if isinstance(profile, BuildProfile):
        return profile
    try:
        return BuildProfile.parse(profile)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


class BuildOrchestrator:
    """Drives builds for one project directory.

    Args:
        project_dir: Directory containing project.toml
        project: Pre-loaded project (loaded from project.toml when omitted)
        toolchain: Toolchain to use (GccToolchain when omitted)
        storage_factory: profile name -> CacheStorage (JSON file per profile when omitted)
        features: Features to enable on top of the manifest's defaults

    Raises:
        ConfigurationError: If project is omitted and project.toml is missing or invalid
    """

    def __init__(
        self,
        project_dir: Path,
        project: Optional[Project] = None,
        toolchain: Optional[Toolchain] = None,
        storage_factory: Optional[StorageFactory] = None,
        features: Optional[FeatureSelection] = None,
    ):
        # Tools run with cwd=project_dir, so every derived path must not depend on ours
        self.project_dir = Path(project_dir).absolute()
        self.project = project if project is not None else load_project(self.project_dir)
        self.toolchain: Toolchain = toolchain if toolchain is not None else GccToolchain(self.project_dir)
        self.storage_factory: StorageFactory = storage_factory or self._json_storage
        self.features = features or FeatureSelection()

    def _json_storage(self, profile: str) -> CacheStorage:
        return JsonFileStorage(get_cache_file(self.project_dir, profile))

    def scan(self) -> tuple[ScanResult, DependencyGraph]:
        """Scan the source tree and build the include graph."""
        result = SourceScanner(self.project_dir, self.project).scan()
        return result, DependencyGraph.from_scan(result)

    def _scan_units(self) -> tuple[ScanResult, DependencyGraph]:
        result, graph = self.scan()
        if not result.translation_units:
            dirs = ", ".join(self.project.source_dirs)
            raise ConfigurationError(f"No translation units found in {dirs}")
        return result, graph

    def _context(
        self, profile: BuildProfile, job_limit: Optional[int], verbose: bool, use_cxx: bool
    ) -> BuildContext:
        if job_limit is None:
            job_limit = get_default_jobs()
        elif job_limit < 1:
            raise ConfigurationError(f"Job limit must be at least 1 (got {job_limit})")
        return BuildContext.create(
            project_dir=self.project_dir,
            project=self.project,
            profile=profile,
            c_compiler=self.toolchain.c_compiler,
            cxx_compiler=self.toolchain.cxx_compiler,
            job_limit=job_limit,
            use_cxx=use_cxx,
            verbose=verbose,
            features=self.project.enabled_features(self.features),
        )

    def build(
        self,
        profile: "str | BuildProfile" = BuildProfile.DEBUG,
        job_limit: Optional[int] = None,
        verbose: bool = False,
        callback: Optional[ProgressCallback] = None,
    ) -> BuildReport:
        """Build the project incrementally.

        Args:
            profile: "debug" (alias "dev") or "release"
            job_limit: Maximum concurrent compiles (ZORA_JOBS or CPU count when omitted)
            verbose: Print literal command lines
            callback: Receives per-unit state transitions

        Returns:
            BuildReport; call raise_for_status() to turn failures into exceptions

        Raises:
            ConfigurationError: Invalid profile, job limit or empty source tree
            ToolchainInvocationError: A required tool is missing or failed to start
        """
        build_profile = _parse_profile(profile)
        set_verbose(verbose)
        print_profile_banner(build_profile, compiler=self.toolchain.c_compiler)

        with TimedLogger("Scanning sources", phase=(1, 2)) as timed:
            result, graph = self._scan_units()
            timed.detail(f"Translation units: {len(result.translation_units)}")
            log_detail(f"Headers: {len(result.headers)}", verbose_only=True)

        context = self._context(build_profile, job_limit, verbose, result.has_cpp)
        self.toolchain.verify(self.project.kind, context.link_signature.use_cxx)
        if context.features:
            log_detail(f"Features: {', '.join(context.features)}")

        cache = FingerprintCache(self.project_dir, self.storage_factory(build_profile.value), graph)
        if cache.corruption:
            log_warning(f"Ignored {len(cache.corruption)} unreadable cache record(s); affected units will be rebuilt")
        scheduler = ParallelScheduler(self.toolchain, callback)

        log_phase(2, 2, f"Building {self.project.name} [{build_profile.value}] with {context.job_limit} jobs...")
        report = scheduler.build(graph, cache, context)

        if report.success:
            log_success(
                f"Finished {build_profile.value}: {len(report.compiled_units)} compiled, "
                f"{len(report.fresh_units)} cached ({report.total_elapsed:.2f}s)"
            )
            if report.artifact is not None:
                log_artifact_path(report.artifact)
        elif report.failed_units:
            log_error(f"{len(report.failed_units)} unit(s) failed to compile: {', '.join(report.failed_units)}")
        else:
            log_error(f"Linking {self.project.name} failed")
        return report

    def run(
        self,
        profile: "str | BuildProfile" = BuildProfile.DEBUG,
        args: Sequence[str] = (),
        job_limit: Optional[int] = None,
        verbose: bool = False,
    ) -> int:
        """Build, then run the executable with args.

        Returns:
            The program's exit code

        Raises:
            ConfigurationError: If the project is a library
            CompileError / LinkError: If the build failed
        """
        if self.project.kind.is_library:
            raise ConfigurationError(f"Cannot run {self.project.name}: project type is {self.project.kind}")
        report = self.build(profile, job_limit=job_limit, verbose=verbose)
        report.raise_for_status()
        assert report.artifact is not None

        cmd = [str(report.artifact.resolve()), *args]
        logger.info(f"Running {' '.join(cmd)}")
        completed = safe_run(cmd, cwd=str(self.project_dir), stdin=None)
        return completed.returncode

    def check(self, verbose: bool = False) -> list[Diagnostic]:
        """Syntax-check every unit without writing anything.

        Returns:
            Every diagnostic produced, in unit order; empty means clean

        Raises:
            ConfigurationError: If there is nothing to check
            ToolchainInvocationError: If the compiler is missing
        """
        set_verbose(verbose)
        result, _graph = self._scan_units()
        context = self._context(BuildProfile.DEBUG, 1, verbose, result.has_cpp)
        self.toolchain.verify(self.project.kind, context.link_signature.use_cxx)
        self.toolchain.clear_cancellation()

        diagnostics: list[Diagnostic] = []
        for unit in result.translation_units:
            log_detail(f"[check] {unit.path}", verbose_only=True)
            diagnostics.extend(self.toolchain.syntax_check(unit, context.signature))
        logger.info(f"Checked {len(result.translation_units)} units: {len(diagnostics)} diagnostics")
        return diagnostics

    def _caches(self) -> list[FingerprintCache]:
        return [FingerprintCache(self.project_dir, self.storage_factory(p.value)) for p in BuildProfile]

    def cache_stats(self) -> CacheStats:
        """Entry count and size summed across profiles."""
        total = CacheStats(entry_count=0, size_bytes=0)
        for cache in self._caches():
            total = total + cache.stats()
        return total

    def cache_clear(self) -> None:
        """Forget every fingerprint, so the next build recompiles everything."""
        for cache in self._caches():
            cache.clear()

    def cache_prune(self) -> list[Path]:
        """Remove directories under the build root that belong to no profile.

        Returns:
            The directories that were removed
        """
        build_root = get_build_root(self.project_dir)
        if not build_root.is_dir():
            return []
        keep = {p.value for p in BuildProfile}
        removed: list[Path] = []
        for entry in sorted(build_root.iterdir()):
            if entry.is_dir() and entry.name not in keep:
                shutil.rmtree(entry)
                removed.append(entry)
        logger.info(f"Pruned {len(removed)} directories from {build_root}")
        return removed

    def clean(self, include_cache: bool = True) -> list[Path]:
        """Remove build outputs.

        Args:
            include_cache: Also remove the fingerprint cache

        Returns:
            The paths that were removed
        """
        removed: list[Path] = []
        target_root = get_target_root(self.project_dir)
        build_root = get_build_root(self.project_dir)

        for profile in BuildProfile:
            for path in (target_root / profile.value, get_object_dir(self.project_dir, profile.value)):
                if path.exists():
                    shutil.rmtree(path)
                    removed.append(path)
        if include_cache:
            for profile in BuildProfile:
                cache_file = get_cache_file(self.project_dir, profile.value)
                existed = cache_file.exists()
                self.storage_factory(profile.value).clear()
                if existed:
                    removed.append(cache_file)

        for root in [*(build_root / p.value for p in BuildProfile), build_root, target_root]:
            if root.is_dir() and not any(root.iterdir()):
                root.rmdir()
                removed.append(root)

        logger.info(f"Cleaned {len(removed)} paths")
        return removed

    def info(self) -> dict[str, Any]:
        """Project summary with unit and header counts."""
        result, graph = self.scan()
        project = self.project
        target_root = get_target_root(self.project_dir)
        stats = {p.value: FingerprintCache(self.project_dir, self.storage_factory(p.value)).stats() for p in BuildProfile}
        return {
            "name": project.name,
            "version": project.version,
            "kind": project.kind.value,
            "language": project.language,
            "std": project.std or None,
            "source_dirs": list(project.source_dirs),
            "include_dirs": list(project.include_dirs),
            "libs": list(project.libs),
            "features": {name: list(values) for name, values in sorted(project.features.items())},
            "default_features": list(project.default_features),
            "translation_units": len(result.translation_units),
            "headers": len(result.headers),
            "external_includes": len(result.unresolved),
            "c_compiler": self.toolchain.c_compiler,
            "cxx_compiler": self.toolchain.cxx_compiler,
            "artifacts": {p.value: str(target_root / p.value / artifact_file_name(project)) for p in BuildProfile},
            "cache_entries": {name: s.entry_count for name, s in stats.items()},
            "graph": graph.to_dict(),
        }
