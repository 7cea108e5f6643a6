"""Executable policy parameters."""
