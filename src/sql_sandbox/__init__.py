"""Sandboxed SQL execution engine for graded database exercises."""

__version__ = "0.1.0"
