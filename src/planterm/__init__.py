"""Planterm - streaming terminal front-end for AI planning sessions."""

__version__ = "0.1.0"
