"""
Command-line interface for Zora.

This module provides the `zora` CLI tool for building C/C++ projects.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import NoReturn, Optional, Sequence

from rich.console import Console
from rich.table import Table

from zora import __version__
from zora.build.error_collector import ErrorCollector
from zora.build.fingerprint_cache import format_size
from zora.build.models import BuildReport
from zora.build.orchestrator import BuildOrchestrator
from zora.build.progress_display import BuildProgressDisplay
from zora.config.project_config import FeatureSelection
from zora.errors import ConfigurationError, ZoraError
from zora.output import init_timer, log_build_complete, log_detail, log_error, log_header

RED = "\033[1;31m"
GREEN = "\033[1;32m"
YELLOW = "\033[1;33m"
RESET = "\033[0m"


@dataclass
class BuildArgs:
    """Arguments for the build and run commands."""

    project_dir: Path
    profile: str = "debug"
    jobs: Optional[int] = None
    verbose: bool = False
    program_args: list[str] = field(default_factory=list)
    features: FeatureSelection = field(default_factory=FeatureSelection)


@dataclass
class CheckArgs:
    """Arguments for the check command."""

    project_dir: Path
    verbose: bool = False
    features: FeatureSelection = field(default_factory=FeatureSelection)


@dataclass
class CleanArgs:
    """Arguments for the clean command."""

    project_dir: Path
    keep_cache: bool = False
    verbose: bool = False


@dataclass
class CacheArgs:
    """Arguments for the cache command."""

    project_dir: Path
    action: str = "stats"
    verbose: bool = False


def _fail(title: str, detail: str = "") -> NoReturn:
    print()
    print(f"{RED}✗ {title}{RESET}")
    if detail:
        print()
        print(detail)
    sys.exit(1)


def _interrupted() -> NoReturn:
    print()
    print(f"{YELLOW}✗ Interrupted{RESET}")
    sys.exit(130)  # Standard exit code for SIGINT


def _print_report_errors(report: BuildReport) -> None:
    collector = ErrorCollector.from_report(report)
    if collector.has_errors() or collector.has_warnings():
        print()
        print(collector.format_errors())
    failing = collector.failing_units()
    if failing:
        log_error(f"{len(failing)} unit(s) failed to compile: {', '.join(failing)}")
    if collector.has_fatal_errors():
        log_error("Link failed")
    if collector.has_errors():
        log_detail(collector.format_summary())


def build_command(args: BuildArgs) -> None:
    """Build the project incrementally.

    Examples:
        zora build                     # Debug build of the current directory
        zora build path/to/project     # Build another project
        zora build --release -j 8      # Optimized build with 8 parallel compiles
        zora build --verbose           # Show compiler command lines
    """
    init_timer()
    log_header("Zora Build System", __version__)

    try:
        orchestrator = BuildOrchestrator(args.project_dir, features=args.features)
        if args.verbose and sys.stdout.isatty():
            with BuildProgressDisplay(Console(), f"{orchestrator.project.name} [{args.profile}]") as display:
                report = orchestrator.build(args.profile, job_limit=args.jobs, verbose=args.verbose, callback=display)
        else:
            report = orchestrator.build(args.profile, job_limit=args.jobs, verbose=args.verbose)

        if report.success:
            print()
            print(f"{GREEN}✓ Build successful!{RESET}")
            if report.warning_count:
                _print_report_errors(report)
            log_build_complete(report.total_elapsed)
            sys.exit(0)

        _print_report_errors(report)
        _fail("Build failed!")

    except KeyboardInterrupt:
        _interrupted()
    except ZoraError as e:
        _fail("Build failed!", str(e))
    except Exception as e:
        print()
        print(f"{RED}✗ Unexpected error{RESET}")
        print()
        print(f"{type(e).__name__}: {e}")

        if args.verbose:
            import traceback

            print()
            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


def run_command(args: BuildArgs) -> None:
    """Build the project, then run the executable.

    Examples:
        zora run                       # Build and run (debug)
        zora run --release -- --help   # Pass arguments to the program
    """
    init_timer()
    try:
        orchestrator = BuildOrchestrator(args.project_dir, features=args.features)
        exit_code = orchestrator.run(args.profile, args.program_args, job_limit=args.jobs, verbose=args.verbose)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        _interrupted()
    except ZoraError as e:
        _fail("Run failed!", str(e))


def check_command(args: CheckArgs) -> None:
    """Syntax-check every translation unit without producing objects."""
    init_timer()
    try:
        orchestrator = BuildOrchestrator(args.project_dir, features=args.features)
        diagnostics = orchestrator.check(verbose=args.verbose)
    except KeyboardInterrupt:
        _interrupted()
    except ZoraError as e:
        _fail("Check failed!", str(e))

    for diagnostic in diagnostics:
        print(diagnostic.format())
    errors = [d for d in diagnostics if d.is_error]
    if errors:
        _fail(f"Check failed: {len(errors)} error(s)")
    print(f"{GREEN}✓ Check passed{RESET}")
    sys.exit(0)


def clean_command(args: CleanArgs) -> None:
    """Remove build outputs (and the fingerprint cache unless --keep-cache)."""
    try:
        orchestrator = BuildOrchestrator(args.project_dir)
        removed = orchestrator.clean(include_cache=not args.keep_cache)
    except ZoraError as e:
        _fail("Clean failed!", str(e))

    if not removed:
        print("Nothing to clean")
    for path in removed:
        print(f"Removed {path}")
    sys.exit(0)


def info_command(args: CheckArgs) -> None:
    """Show the project summary."""
    try:
        info = BuildOrchestrator(args.project_dir).info()
    except ZoraError as e:
        _fail("Info failed!", str(e))

    table = Table(title=f"{info['name']} {info['version']}", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Type", info["kind"])
    table.add_row("Language", info["language"] + (f" ({info['std']})" if info["std"] else ""))
    table.add_row("Source dirs", ", ".join(info["source_dirs"]))
    table.add_row("Include dirs", ", ".join(info["include_dirs"]))
    table.add_row("Translation units", str(info["translation_units"]))
    table.add_row("Headers", str(info["headers"]))
    table.add_row("External includes", str(info["external_includes"]))
    if info["features"]:
        defaults = set(info["default_features"])
        names = [f"{name} (default)" if name in defaults else name for name in info["features"]]
        table.add_row("Features", ", ".join(names))
    table.add_row("C compiler", info["c_compiler"])
    table.add_row("C++ compiler", info["cxx_compiler"])
    for profile, artifact in info["artifacts"].items():
        table.add_row(f"Artifact ({profile})", artifact)
        table.add_row(f"Cache entries ({profile})", str(info["cache_entries"][profile]))
    Console().print(table)
    sys.exit(0)


def cache_command(args: CacheArgs) -> None:
    """Show, clear or prune the fingerprint cache."""
    try:
        orchestrator = BuildOrchestrator(args.project_dir)
        if args.action == "clear":
            orchestrator.cache_clear()
            print(f"{GREEN}✓ Cache cleared{RESET}")
            sys.exit(0)
        if args.action == "prune":
            pruned = orchestrator.cache_prune()
            for path in pruned:
                print(f"Pruned {path}")
            print(f"{GREEN}✓ Pruned {len(pruned)} directories{RESET}" if pruned else "Nothing to prune")
            sys.exit(0)
        stats = orchestrator.cache_stats()
    except ZoraError as e:
        _fail("Cache command failed!", str(e))

    table = Table(title="Fingerprint cache", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Entries", str(stats.entry_count))
    table.add_row("Size", format_size(stats.size_bytes))
    Console().print(table)
    sys.exit(0)


def _add_project_dir(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )


def _add_verbose(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def _add_build_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-r",
        "--release",
        action="store_true",
        help="Build with the release profile (same as --profile release)",
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="Build profile: debug (alias dev) or release (default: debug)",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Maximum parallel compiles (default: ZORA_JOBS or CPU count)",
    )


def _add_feature_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--features",
        action="append",
        default=[],
        help="Comma-separated features to enable (repeatable)",
    )
    parser.add_argument(
        "--all-features",
        action="store_true",
        help="Enable every declared feature",
    )
    parser.add_argument(
        "--no-default-features",
        action="store_true",
        help="Do not enable default_features",
    )


def _feature_selection(parsed_args: argparse.Namespace) -> FeatureSelection:
    requested = [name.strip() for value in parsed_args.features for name in value.split(",") if name.strip()]
    return FeatureSelection(
        requested=tuple(requested),
        all_features=parsed_args.all_features,
        no_default_features=parsed_args.no_default_features,
    )


def _resolve_profile(parsed_args: argparse.Namespace) -> str:
    if parsed_args.release:
        if parsed_args.profile and parsed_args.profile != "release":
            raise ConfigurationError(f"--release conflicts with --profile {parsed_args.profile}")
        return "release"
    return parsed_args.profile or "debug"


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zora",
        description="Zora - Incremental C/C++ build tool",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"zora {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    build_parser = subparsers.add_parser("build", help="Build the project")
    _add_project_dir(build_parser)
    _add_build_options(build_parser)
    _add_feature_options(build_parser)
    _add_verbose(build_parser)

    run_parser = subparsers.add_parser("run", help="Build and run the executable (program arguments after --)")
    _add_project_dir(run_parser)
    _add_build_options(run_parser)
    _add_feature_options(run_parser)
    _add_verbose(run_parser)

    check_parser = subparsers.add_parser("check", help="Syntax-check all sources without building")
    _add_project_dir(check_parser)
    _add_feature_options(check_parser)
    _add_verbose(check_parser)

    clean_parser = subparsers.add_parser("clean", help="Remove build outputs")
    _add_project_dir(clean_parser)
    clean_parser.add_argument(
        "--keep-cache",
        action="store_true",
        help="Keep the fingerprint cache",
    )
    _add_verbose(clean_parser)

    info_parser = subparsers.add_parser("info", help="Show project information")
    _add_project_dir(info_parser)
    _add_verbose(info_parser)

    cache_parser = subparsers.add_parser("cache", help="Inspect, clear or prune build caches")
    cache_parser.add_argument("action", choices=["stats", "clear", "prune"], help="Cache action")
    _add_project_dir(cache_parser)
    _add_verbose(cache_parser)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Zora - Incremental C/C++ build tool."""
    argv = list(sys.argv[1:] if argv is None else argv)
    program_args: list[str] = []
    if "--" in argv:
        split = argv.index("--")
        argv, program_args = argv[:split], argv[split + 1 :]

    parser = create_parser()
    parsed_args = parser.parse_args(argv)

    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not parsed_args.project_dir.exists():
        print(f"{RED}✗ Error: Path does not exist: {parsed_args.project_dir}{RESET}")
        sys.exit(2)
    if not parsed_args.project_dir.is_dir():
        print(f"{RED}✗ Error: Path is not a directory: {parsed_args.project_dir}{RESET}")
        sys.exit(2)

    if parsed_args.command in ("build", "run"):
        try:
            profile = _resolve_profile(parsed_args)
        except ConfigurationError as e:
            print(f"{RED}✗ Error: {e}{RESET}")
            sys.exit(2)
        args = BuildArgs(
            project_dir=parsed_args.project_dir,
            profile=profile,
            jobs=parsed_args.jobs,
            verbose=parsed_args.verbose,
            program_args=program_args,
            features=_feature_selection(parsed_args),
        )
        if parsed_args.command == "build":
            build_command(args)
        else:
            run_command(args)
    elif parsed_args.command == "check":
        check_command(
            CheckArgs(
                project_dir=parsed_args.project_dir,
                verbose=parsed_args.verbose,
                features=_feature_selection(parsed_args),
            )
        )
    elif parsed_args.command == "clean":
        clean_command(
            CleanArgs(
                project_dir=parsed_args.project_dir,
                keep_cache=parsed_args.keep_cache,
                verbose=parsed_args.verbose,
            )
        )
    elif parsed_args.command == "info":
        info_command(CheckArgs(project_dir=parsed_args.project_dir, verbose=parsed_args.verbose))
    elif parsed_args.command == "cache":
        cache_command(
            CacheArgs(
                project_dir=parsed_args.project_dir,
                action=parsed_args.action,
                verbose=parsed_args.verbose,
            )
        )


if __name__ == "__main__":
    main()
