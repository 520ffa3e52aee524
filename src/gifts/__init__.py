"""Gifts: shared journal backend for couples."""

__version__ = "0.1.0"
