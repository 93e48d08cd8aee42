"""Subprocess utilities for platform-safe process execution.

This module provides wrappers around the subprocess module that apply
platform-specific flags, plus a helper that tears down a whole process tree
when a build is interrupted.
"""

import logging
import subprocess
import sys
from typing import Any

import psutil

logger = logging.getLogger(__name__)


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def _apply_default_kwargs(kwargs: dict[str, Any]) -> dict[str, Any]:
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    # Compilers never read stdin; keep them off the console input handle
    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return kwargs


def safe_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """Execute subprocess.run with platform-specific flags.

    Automatically applies:
    - CREATE_NO_WINDOW on Windows (prevents console window)
    - stdin=DEVNULL (prevents console input handle inheritance)

    Args:
        cmd: Command and arguments (same as subprocess.run)
        **kwargs: Additional arguments passed to subprocess.run

    Returns:
        CompletedProcess result from subprocess.run

    Note:
        If 'creationflags' is provided it is OR'd with the platform defaults.
        If 'stdin' is provided it is used as-is.
    """
    return subprocess.run(cmd, **_apply_default_kwargs(kwargs))


def safe_popen(cmd: list[str], **kwargs: Any) -> subprocess.Popen:
    """Execute subprocess.Popen with platform-specific flags.

    Same defaults as safe_run(), for callers that need the process handle
    (for example to terminate an in-flight compile).

    Args:
        cmd: Command and arguments (same as subprocess.Popen)
        **kwargs: Additional arguments passed to subprocess.Popen

    Returns:
        Popen process handle
    """
    return subprocess.Popen(cmd, **_apply_default_kwargs(kwargs))


def terminate_process_tree(pid: int, timeout: float = 3.0) -> None:
    """Terminate a process and all of its children.

    Compiler drivers (gcc, clang) spawn cc1/as/ld children, so killing only
    the driver can leave orphans writing into the object directory.

    Args:
        pid: Root process id
        timeout: Seconds to wait after terminate() before escalating to kill()
    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    try:
        processes = root.children(recursive=True)
    except psutil.NoSuchProcess:
        processes = []
    processes.append(root)

    for proc in processes:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied:
            logger.warning(f"Access denied terminating process {proc.pid}")

    _gone, alive = psutil.wait_procs(processes, timeout=timeout)
    for proc in alive:
        try:
            logger.debug(f"Force killing process {proc.pid}")
            proc.kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied:
            logger.warning(f"Access denied killing process {proc.pid}")
