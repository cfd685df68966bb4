"""Ember — gateway protocol client and streaming chat."""

__version__ = "1.0.0"
