"""Suggestion pools shown by the chat panel before the first question."""

from collections.abc import Iterable
from dataclasses import dataclass, field

from packages.core.chat.models import SuggestionItem


@dataclass
class SuggestionView:
    """Suggestion groups to render right now."""

    dynamic: list[SuggestionItem] = field(default_factory=list)
    general: list[SuggestionItem] = field(default_factory=list)
    section: list[SuggestionItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.dynamic or self.general or self.section)


def _unique_by_id(items: Iterable[SuggestionItem]) -> list[SuggestionItem]:
    # Keyed by id only: same text with a different element stays distinct
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


class SuggestionPools:
    """
    Tracks the three suggestion pools of a chat panel.

    - section: derived once from the questions passed in at mount,
      split into general and section-specific items
    - dynamic: non-general items of the current invocation
    - general: general items of the current invocation, falling back
      to the mount-time general items
    """

    def __init__(self, section_questions: Iterable[SuggestionItem] = ()):
        items = _unique_by_id(section_questions)
        self._section_general = [q for q in items if q.is_general]
        self._section_specific = [q for q in items if not q.is_general]
        self._dynamic: list[SuggestionItem] = []
        self._general: list[SuggestionItem] = []

    def load_event(self, items: Iterable[SuggestionItem]) -> None:
        """Replace the invocation-scoped pools with an event payload."""
        items = _unique_by_id(items)
        self._dynamic = [q for q in items if not q.is_general]
        self._general = [q for q in items if q.is_general]

    def reset(self) -> None:
        """Drop invocation-scoped pools, keeping the mount-time ones."""
        self._dynamic = []
        self._general = []

    def visible(self, has_turns: bool, has_history: bool) -> SuggestionView:
        """
        Decide which groups to show.

        Args:
            has_turns: A question was already dispatched in this view.
            has_history: The current session has prior history.
        """
        if has_turns:
            return SuggestionView()

        general = [] if has_history else self._general or self._section_general
        return SuggestionView(
            dynamic=list(self._dynamic),
            general=list(general),
            section=list(self._section_specific),
        )

    def find(self, suggestion_id: str) -> SuggestionItem | None:
        """Look a suggestion up by id in any pool."""
        for item in (
            *self._dynamic,
            *self._general,
            *self._section_specific,
            *self._section_general,
        ):
            if item.id == suggestion_id:
                return item
        return None
