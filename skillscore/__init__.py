"""Scoring core for skill-practice exercises."""

__version__ = "0.1.0"
