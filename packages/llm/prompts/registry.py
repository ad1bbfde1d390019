"""Prompt registry for deep-question version management."""

from .base import BaseDeepQuestionPrompt


class DeepQuestionPromptRegistry:
    """
    Registry for deep-question prompt versions.

    Supports "latest" as an alias for the most recent version.
    """

    _prompts: dict[str, type[BaseDeepQuestionPrompt]] = {}

    @classmethod
    def register(
        cls,
        prompt_class: type[BaseDeepQuestionPrompt],
    ) -> type[BaseDeepQuestionPrompt]:
        """
        Register a prompt class.

        Can be used as a decorator:
            @DeepQuestionPromptRegistry.register
            class DeepQuestionPromptV1(BaseDeepQuestionPrompt):
                version = "v1"
                ...
        """
        cls._prompts[prompt_class.version] = prompt_class
        return prompt_class

    @classmethod
    def get(cls, version: str = "latest") -> BaseDeepQuestionPrompt:
        """
        Get a prompt instance by version.

        Args:
            version: Version string (e.g., "v1", "v2") or "latest".

        Raises:
            ValueError: If the version is not registered.
        """
        if not cls._prompts:
            raise ValueError("No deep-question prompts registered")

        if version == "latest":
            version = cls.list_versions()[-1]

        if version not in cls._prompts:
            available = ", ".join(cls.list_versions())
            raise ValueError(
                f"Unknown deep-question prompt version: {version}. Available: {available}"
            )

        return cls._prompts[version]()

    @classmethod
    def list_versions(cls) -> list[str]:
        """List all registered prompt versions."""
        return sorted(cls._prompts.keys(), key=cls._version_sort_key)

    @classmethod
    def _version_sort_key(cls, version: str) -> tuple:
        """Sort "v2" before "v10"."""
        if version.startswith("v"):
            try:
                return (0, int(version[1:]))
            except ValueError:
                pass
        return (1, version)

    @classmethod
    def clear(cls) -> None:
        """Clear all registered prompts. Useful for testing."""
        cls._prompts.clear()
