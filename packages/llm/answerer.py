"""
Deep-question answerer for Curiow.

Answers a reader's question about a gem with an LLM and suggests a
few follow-up questions.
"""

import logging
import time

from langchain_core.exceptions import OutputParserException
from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import PydanticOutputParser
from pydantic import BaseModel, Field, field_validator

from packages.core.chat.models import ConversationTurn, ElementContext
from packages.llm.factory import LLMFactory
from packages.llm.prompts import DeepQuestionPromptRegistry

logger = logging.getLogger(__name__)

MAX_FOLLOW_UPS = 3
HISTORY_WINDOW = 5


# -----------------------------
# Errors / output
# -----------------------------


class DeepQuestionError(Exception):
    """Raised when an answer cannot be generated."""

    pass


class DeepAnswer(BaseModel):
    """Structured output the LLM is asked to emit."""

    answer: str = Field(description="La risposta alla domanda del lettore")
    questions: list[str] = Field(
        default_factory=list,
        description="Fino a 3 domande di approfondimento",
    )

    @field_validator("questions")
    @classmethod
    def trim_questions(cls, v: list[str]) -> list[str]:
        cleaned = [q.strip() for q in v if q and q.strip()]
        return cleaned[:MAX_FOLLOW_UPS]


# -----------------------------
# Answerer
# -----------------------------


class DeepQuestionAnswerer:
    """
    Generates answers for deep-question requests.

    Uses the versioned deep-question prompt and a Pydantic output
    parser; plain-text replies are accepted as answers without
    follow-ups.
    """

    def __init__(
        self,
        llm: BaseChatModel | None = None,
        prompt_version: str = "latest",
    ):
        """
        Initialize the answerer.

        Args:
            llm: LangChain chat model to use.
                Uses LLMFactory.create_from_settings() if not provided.
            prompt_version: Version of the prompt to use (e.g., "v1", "latest").
        """
        self._llm = llm or LLMFactory.create_from_settings()
        self._prompt = DeepQuestionPromptRegistry.get(prompt_version)
        self._output_parser = PydanticOutputParser(pydantic_object=DeepAnswer)

    async def generate(
        self,
        question: str,
        gem_description: str,
        element: ElementContext | None = None,
        history: list[ConversationTurn] | None = None,
    ) -> DeepAnswer:
        """
        Answer a question about a gem.

        Args:
            question: The reader's question.
            gem_description: Descriptive context of the gem.
            element: Section of the gem the question relates to.
            history: Previous turns of the session, oldest first.

        Raises:
            DeepQuestionError: If the LLM call fails or returns nothing usable.
        """
        prompt = self._prompt.build(
            gem_context=gem_description.strip() or "(nessuna descrizione)",
            element_context=self._format_element(element),
            conversation_history=self._format_history(history or []),
            format_instructions=self._output_parser.get_format_instructions(),
        )

        start_time = time.time()
        try:
            messages = prompt.format_messages(question=question)
            response = await self._llm.ainvoke(messages)
        except Exception as e:
            logger.error(f"Deep-question LLM call failed: {e}", exc_info=True)
            raise DeepQuestionError(f"Failed to generate answer: {e}") from e

        content = self._normalize_content(response.content)
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Generated deep answer for '{question[:50]}' "
            f"({len(content)} chars, {duration_ms}ms)"
        )

        try:
            return self._output_parser.parse(content)
        except OutputParserException:
            if not content:
                raise DeepQuestionError("Empty answer from LLM")
            logger.debug("LLM reply is not structured, using it as plain answer")
            return DeepAnswer(answer=content)

    def _format_element(self, element: ElementContext | None) -> str | None:
        if element is None or element.is_general:
            return None
        parts = [f"Tipo: {element.name}"]
        if element.index is not None:
            parts.append(f"Passo: {element.index + 1}")
        if element.title:
            parts.append(f"Titolo: {element.title}")
        if element.test:
            parts.append(f"Testo: {element.test}")
        return "\n".join(parts)

    def _format_history(self, history: list[ConversationTurn]) -> str | None:
        parts = []
        for turn in history[-HISTORY_WINDOW:]:
            if not turn.answer:
                continue
            parts.append(f"Lettore: {turn.question.strip()}")
            parts.append(f"Assistente: {turn.answer.strip()}")
        return "\n".join(parts) if parts else None

    def _normalize_content(self, content: str | list) -> str:
        """Flatten string or content-block replies into plain text."""
        if not content:
            return ""

        if isinstance(content, list):
            text_parts = []
            for block in content:
                if isinstance(block, dict):
                    text = block.get("text") or block.get("content", "")
                    if text:
                        text_parts.append(str(text))
                elif isinstance(block, str):
                    text_parts.append(block)
            content = " ".join(text_parts)

        content = str(content).strip()

        # Some models wrap JSON in a fenced code block
        if content.startswith("```") and content.endswith("```"):
            lines = content.split("\n")
            if len(lines) > 2:
                content = "\n".join(lines[1:-1])

        return content.strip()
