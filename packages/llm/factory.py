"""
LLM Factory for Curiow.

Builds the LangChain chat model that answers deep questions, for
whichever provider the deployment is configured with.
"""

import importlib
from dataclasses import dataclass

from langchain_core.language_models import BaseChatModel


# -----------------------------
# Errors
# -----------------------------


class LLMProviderError(Exception):
    """Raised when LLM provider configuration is invalid."""

    pass


# -----------------------------
# Provider Registry
# -----------------------------


@dataclass(frozen=True)
class ProviderSpec:
    """Where a provider's chat model lives and how it takes its API key."""

    module: str
    class_name: str
    package: str
    api_key_kwarg: str
    default_model: str


PROVIDERS: dict[str, ProviderSpec] = {
    "gemini": ProviderSpec(
        module="langchain_google_genai",
        class_name="ChatGoogleGenerativeAI",
        package="langchain-google-genai",
        api_key_kwarg="google_api_key",
        default_model="gemini-2.0-flash",
    ),
    "openai": ProviderSpec(
        module="langchain_openai",
        class_name="ChatOpenAI",
        package="langchain-openai",
        api_key_kwarg="api_key",
        default_model="gpt-4o-mini",
    ),
    "anthropic": ProviderSpec(
        module="langchain_anthropic",
        class_name="ChatAnthropic",
        package="langchain-anthropic",
        api_key_kwarg="api_key",
        default_model="claude-3-5-sonnet-latest",
    ),
}


class LLMFactory:
    """
    Factory for creating chat models from various providers.

    Supports:
    - gemini (Google Generative AI) - default
    - openai (OpenAI)
    - anthropic (Anthropic)
    """

    DEFAULT_MODELS: dict[str, str] = {
        name: spec.default_model for name, spec in PROVIDERS.items()
    }

    @classmethod
    def create(
        cls,
        provider: str,
        model: str | None = None,
        temperature: float = 0.0,
        api_key: str | None = None,
        **kwargs,
    ) -> BaseChatModel:
        """
        Create a chat model for the specified provider.

        Args:
            provider: The LLM provider ("gemini", "openai", "anthropic").
            model: Model name. Uses provider default if not specified.
            temperature: Temperature for generation (0.0 - 2.0).
            api_key: API key for the provider. Uses env var if not specified.
            **kwargs: Additional provider-specific arguments.

        Raises:
            LLMProviderError: If provider is unknown or its package is missing.
        """
        spec = PROVIDERS.get(provider.lower())
        if spec is None:
            raise LLMProviderError(
                f"Unknown provider: {provider}. "
                f"Supported: {', '.join(PROVIDERS)}"
            )

        chat_model_class = cls._load(spec)

        init_kwargs = {
            "model": model or spec.default_model,
            "temperature": temperature,
            **kwargs,
        }
        if api_key:
            init_kwargs[spec.api_key_kwarg] = api_key

        return chat_model_class(**init_kwargs)

    @classmethod
    def create_from_settings(cls, settings=None) -> BaseChatModel:
        """
        Create a chat model from LLMSettings.

        Args:
            settings: LLMSettings to use. Loaded from the environment if not given.
        """
        if settings is None:
            # Import here to avoid circular imports
            from app.core.config import get_llm_settings

            settings = get_llm_settings()

        kwargs = {}
        if settings.llm_request_timeout_seconds:
            kwargs["timeout"] = settings.llm_request_timeout_seconds

        return cls.create(
            provider=settings.llm_provider,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            api_key=settings.get_api_key(),
            **kwargs,
        )

    @staticmethod
    def _load(spec: ProviderSpec) -> type[BaseChatModel]:
        try:
            module = importlib.import_module(spec.module)
        except ImportError as e:
            raise LLMProviderError(
                f"{spec.package} is not installed. "
                f"Run: pip install {spec.package}"
            ) from e
        return getattr(module, spec.class_name)
