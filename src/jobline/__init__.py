"""Asynchronous job lifecycle and cancellation service."""

__version__ = "0.1.0"
