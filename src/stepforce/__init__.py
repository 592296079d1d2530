"""Stepforce - plan execution core for tool-calling agents."""

__version__ = "0.1.0"
