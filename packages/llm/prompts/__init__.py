"""Prompt management for Curiow deep-question answers."""

from .base import BaseDeepQuestionPrompt
from .registry import DeepQuestionPromptRegistry

# Import versions to register them
from . import versions  # noqa: F401

__all__ = [
    "BaseDeepQuestionPrompt",
    "DeepQuestionPromptRegistry",
]
