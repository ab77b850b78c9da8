"""Capability checks for the project administration console."""

__version__ = "0.1.0"
