"""Base prompt interface for Curiow deep-question answers."""

from abc import ABC, abstractmethod

from langchain_core.prompts import ChatPromptTemplate


class BaseDeepQuestionPrompt(ABC):
    """
    Abstract base class for deep-question prompts.

    All prompt versions must inherit from this class and implement
    the build method.
    """

    # Version identifier (e.g., "v1", "v2")
    version: str

    # Human-readable description of this prompt version
    description: str

    @abstractmethod
    def build(
        self,
        gem_context: str,
        element_context: str | None,
        conversation_history: str | None,
        format_instructions: str,
    ) -> ChatPromptTemplate:
        """
        Build the prompt template.

        Args:
            gem_context: Description of the gem the question is about.
            element_context: The content section the question relates to, if any.
            conversation_history: Previous turns of the session, if any.
            format_instructions: Pydantic output parser format instructions.

        Returns:
            A ChatPromptTemplate expecting a "question" variable.
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} version={self.version}>"
