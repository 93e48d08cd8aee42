"""
Integration tests for the zora build system.

These tests run the real host toolchain end to end: scanning, compiling,
linking and archiving small C projects.
"""
