"""Pytest configuration and fixtures for zora tests.

This conftest addresses Python 3.13 compatibility issues with pytest's capture fixtures.
Python 3.13 changed how stdout/stderr are handled, causing "I/O operation on closed file"
errors during test teardown. This is a known issue: https://github.com/pytest-dev/pytest/issues/11439

It also isolates every test from environment overrides (ZORA_*, CC, CXX, AR)
and from the module-level verbose flag in zora.output.
"""

import sys
import warnings

import pytest

from zora import output

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)

_ENV_OVERRIDES = ("ZORA_TARGET_DIR", "ZORA_BUILD_DIR", "ZORA_JOBS", "CC", "CXX", "AR")


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):  # noqa: PT004
    """Remove environment overrides so tests see default paths and tools."""
    for name in _ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    output.set_verbose(False)
    yield
    output.set_verbose(False)


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test.

    This prevents "I/O operation on closed file" errors in Python 3.13
    when tests raise exceptions that close stdout/stderr.
    """
    yield

    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, trylast=True)
def pytest_runtest_teardown(item):  # noqa: ARG001
    """Ensure streams are restored during teardown phase."""
    yield

    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__
