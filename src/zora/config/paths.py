"""
Project-relative path configuration.

Centralized definitions for where zora writes artifacts, intermediates and
the fingerprint cache. Environment variables override the defaults:

- ZORA_TARGET_DIR: artifact root (default: <project>/target)
- ZORA_BUILD_DIR: intermediate root (default: <project>/.build)
- ZORA_JOBS: default worker count for parallel compilation
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

MANIFEST_NAME = "project.toml"
TARGET_DIR_NAME = "target"
BUILD_DIR_NAME = ".build"
CACHE_FILE_NAME = "zora-cache.json"


def get_target_root(project_dir: Path) -> Path:
    """Directory that receives final executables and libraries."""
    override = os.environ.get("ZORA_TARGET_DIR")
    if override:
        return Path(override).resolve()
    return project_dir / TARGET_DIR_NAME


def get_build_root(project_dir: Path) -> Path:
    """Directory that receives object files and the fingerprint cache."""
    override = os.environ.get("ZORA_BUILD_DIR")
    if override:
        return Path(override).resolve()
    return project_dir / BUILD_DIR_NAME


def get_object_dir(project_dir: Path, profile: str) -> Path:
    return get_build_root(project_dir) / profile / "obj"


def get_cache_file(project_dir: Path, profile: str) -> Path:
    return get_build_root(project_dir) / profile / CACHE_FILE_NAME


def get_default_jobs() -> int:
    """Default worker count: ZORA_JOBS if set and valid, else the CPU count."""
    value = os.environ.get("ZORA_JOBS")
    if value:
        try:
            jobs = int(value)
            if jobs > 0:
                return jobs
        except ValueError:
            pass
        logger.warning(f"Ignoring invalid ZORA_JOBS value: {value!r}")
    return os.cpu_count() or 1


def executable_suffix(platform: Optional[str] = None) -> str:
    platform = platform or sys.platform
    return ".exe" if platform == "win32" else ""


def shared_library_suffix(platform: Optional[str] = None) -> str:
    platform = platform or sys.platform
    if platform == "darwin":
        return ".dylib"
    if platform == "win32":
        return ".dll"
    return ".so"
