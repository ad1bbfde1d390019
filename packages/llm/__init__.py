"""LLM integration package for Curiow."""

from .answerer import DeepAnswer, DeepQuestionAnswerer, DeepQuestionError
from .factory import LLMFactory, LLMProviderError

__all__ = [
    "DeepAnswer",
    "DeepQuestionAnswerer",
    "DeepQuestionError",
    "LLMFactory",
    "LLMProviderError",
]
