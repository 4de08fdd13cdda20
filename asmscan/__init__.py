"""Inventory .NET assembly versions across a directory tree."""

__version__ = "0.1.0"
