"""Version 1 of the deep-question prompt."""

from langchain_core.prompts import ChatPromptTemplate

from packages.llm.prompts.base import BaseDeepQuestionPrompt
from packages.llm.prompts.registry import DeepQuestionPromptRegistry


@DeepQuestionPromptRegistry.register
class DeepQuestionPromptV1(BaseDeepQuestionPrompt):
    """
    Initial deep-question prompt.

    Answers a reader's question about a gem in Italian and proposes a
    few follow-up questions.
    """

    version = "v1"
    description = "Initial deep-question prompt with follow-up suggestions"

    def build(
        self,
        gem_context: str,
        element_context: str | None,
        conversation_history: str | None,
        format_instructions: str,
    ) -> ChatPromptTemplate:
        """Build the v1 prompt template."""
        system_message = """Sei l'assistente di Curiow, un'app di "gemme" di conoscenza: brevi schede su un argomento.

Il lettore sta approfondendo una gemma e ti fa una domanda.

REGOLE:
1. Rispondi in italiano, in modo chiaro e accurato, in 3-6 frasi.
2. Resta sul tema della gemma; se la domanda riguarda una sezione specifica, parti da quella.
3. Non inventare fonti o dati precisi di cui non sei sicuro.
4. Proponi da 0 a 3 domande di approfondimento brevi e naturali, diverse da quelle già fatte.

{format_instructions}"""

        user_message_parts = [
            "GEMMA:",
            "{gem_context}",
        ]

        if element_context:
            user_message_parts.extend([
                "",
                "SEZIONE:",
                "{element_context}",
            ])

        if conversation_history:
            user_message_parts.extend([
                "",
                "CONVERSAZIONE PRECEDENTE:",
                "{conversation_history}",
            ])

        user_message_parts.extend([
            "",
            "DOMANDA:",
            "{question}",
        ])

        return ChatPromptTemplate.from_messages([
            ("system", system_message),
            ("human", "\n".join(user_message_parts)),
        ]).partial(
            gem_context=gem_context,
            element_context=element_context or "",
            conversation_history=conversation_history or "",
            format_instructions=format_instructions,
        )
