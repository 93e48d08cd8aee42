"""Zora - incremental build tool for C/C++ projects."""

__version__ = "0.1.0"
