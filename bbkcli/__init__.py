"""Broadband measurement client: option handling, terminal client and a small task framework."""

__version__ = "1.0.0"