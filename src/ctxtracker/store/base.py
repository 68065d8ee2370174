"""Repository contract for sessions and extracted facts."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from ..models import ExtractedFact, FactCategory, SessionRecord

# Fields of a session that update_session accepts.
SESSION_PATCH_FIELDS = frozenset(
    {"summary", "facts_extracted", "token_count", "session_start", "session_end"}
)


class RepositoryError(Exception):
    """Raised when a persistence call fails."""

    pass


class NotFound(RepositoryError):
    """Raised when a record does not exist."""

    pass


def validate_session_patch(patch: dict[str, Any]) -> None:
    """Reject patches with fields a session does not have.

    Raises:
        RepositoryError: If the patch names an unknown field.
    """
    unknown = set(patch) - SESSION_PATCH_FIELDS
    if unknown:
        raise RepositoryError(f"Unknown session fields: {', '.join(sorted(unknown))}")


class Repository(ABC):
    """Storage for sessions and facts, keyed by opaque string ids.

    Implementations must be usable from the watcher thread concurrently with
    other callers and serialize conflicting writes themselves. Every method
    raises RepositoryError (or NotFound) on failure.
    """

    @abstractmethod
    def create_session(
        self,
        project_id: str,
        summary: str,
        token_count: int = 0,
        session_start: datetime | None = None,
        facts_extracted: int = 0,
    ) -> SessionRecord:
        """Create a session record; session_start defaults to now."""

    @abstractmethod
    def get_session(self, session_id: str) -> SessionRecord:
        """Get a session by id; raises NotFound if absent."""

    @abstractmethod
    def update_session(self, session_id: str, patch: dict[str, Any]) -> SessionRecord:
        """Apply a partial update to a session and return the result."""

    @abstractmethod
    def list_sessions(self, project_id: str) -> list[SessionRecord]:
        """Sessions of a project, newest session_start first."""

    @abstractmethod
    def create_fact(
        self,
        project_id: str,
        category: FactCategory,
        content: str,
        importance: int,
        session_id: str | None = None,
        stale: bool = False,
    ) -> ExtractedFact:
        """Create a fact; importance is clamped to 1-5."""

    @abstractmethod
    def get_fact(self, fact_id: str) -> ExtractedFact:
        """Get a fact by id; raises NotFound if absent."""

    @abstractmethod
    def list_facts(self, project_id: str, include_stale: bool = False) -> list[ExtractedFact]:
        """Facts of a project by descending importance, then newest first."""

    @abstractmethod
    def mark_fact_stale(self, fact_id: str) -> ExtractedFact:
        """Flag a fact as stale and return it."""

    def list_facts_by_category(
        self, project_id: str, category: FactCategory, include_stale: bool = True
    ) -> list[ExtractedFact]:
        """Facts of one category, in list_facts order."""
        return [
            fact for fact in self.list_facts(project_id, include_stale=include_stale)
            if fact.category is category
        ]

    def close(self) -> None:
        """Release resources held by the repository."""
