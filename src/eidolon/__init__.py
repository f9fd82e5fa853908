"""Eidolon - session, runtime and memory core for persistent AI characters."""

__version__ = "0.1.0"
