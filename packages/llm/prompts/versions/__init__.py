"""Registered deep-question prompt versions."""

from . import v1  # noqa: F401
