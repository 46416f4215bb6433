# blossom/__init__.py
"""Blossom - a source-based package builder for linux."""

__version__ = "0.1.0"
