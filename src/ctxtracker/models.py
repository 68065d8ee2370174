"""Data models for conversation logs, sessions, and extracted facts."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 5

CONTEXT_WINDOW_TOKENS = 200_000
DEFAULT_TOKEN_WARNING = 170_000


class FactCategory(str, Enum):
    """Kind of knowledge a fact records."""

    DECISION = "decision"
    BLOCKER = "blocker"
    FILE_CHANGE = "file_change"
    DEPENDENCY = "dependency"
    TODO = "todo"
    INSIGHT = "insight"

    @property
    def display_name(self) -> str:
        """Human-readable name, e.g. 'File Change'."""
        return self.value.replace("_", " ").title()

    @classmethod
    def parse(cls, value: str) -> "FactCategory":
        """Parse a category from its stored value or display name.

        Args:
            value: 'file_change', 'File Change', 'FILE_CHANGE', ...

        Returns:
            The matching category.

        Raises:
            ValueError: If the value names no category.
        """
        normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
        for category in cls:
            if category.value == normalized:
                return category
        raise ValueError(f"Unknown fact category: {value!r}")


def clamp_importance(value: int) -> int:
    """Clamp an importance score to the 1-5 scale."""
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, int(value)))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A single role-tagged message of a conversation log."""

    role: str
    content: str


@dataclass(frozen=True)
class ConversationLog:
    """A parsed conversation log file.

    Attributes:
        messages: Messages in file order.
        conversation_id: Identifier written by the assistant, if any.
    """

    messages: tuple[Message, ...] = ()
    conversation_id: str | None = None

    def by_role(self, role: str) -> list[Message]:
        """Messages with the given role, in order."""
        return [m for m in self.messages if m.role == role]

    @property
    def is_empty(self) -> bool:
        return not self.messages


@dataclass(frozen=True)
class ExtractedFact:
    """A fact about a project extracted from an assistant message.

    Attributes:
        id: Repository identifier.
        project_id: Project the fact belongs to.
        category: Kind of fact.
        content: The full line the fact was extracted from.
        importance: Score on a 1-5 scale.
        session_id: Session the fact was extracted in, if known.
        stale: True once the fact is no longer relevant.
        created_at: Creation time (timezone-aware, UTC).
        updated_at: Last update time (timezone-aware, UTC).
    """

    id: str
    project_id: str
    category: FactCategory
    content: str
    importance: int = 3
    session_id: str | None = None
    stale: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def importance_stars(self) -> str:
        """Importance as a star rating, e.g. '★★★☆☆'."""
        filled = clamp_importance(self.importance)
        return "★" * filled + "☆" * (MAX_IMPORTANCE - filled)

    def content_preview(self, limit: int = 80) -> str:
        """Content shortened to at most `limit` characters."""
        if len(self.content) <= limit:
            return self.content
        return self.content[: limit - 3] + "..."

    def is_high_importance(self) -> bool:
        return self.importance >= 4

    def is_low_importance(self) -> bool:
        return self.importance <= 2

    def age(self, now: datetime | None = None) -> timedelta:
        """Time elapsed since the fact was created."""
        return (now or utcnow()) - self.created_at

    def age_days(self, now: datetime | None = None) -> int:
        return self.age(now).days


@dataclass(frozen=True)
class SessionRecord:
    """One ingested conversation log.

    Attributes:
        id: Repository identifier.
        project_id: Project the session belongs to.
        summary: Short description, taken from the first user message.
        facts_extracted: Number of facts persisted from this session.
        token_count: Estimated token usage of the conversation.
        session_start: When ingestion of the log began.
        session_end: When the session ended; None while open.
    """

    id: str
    project_id: str
    summary: str
    facts_extracted: int = 0
    token_count: int = 0
    session_start: datetime = field(default_factory=utcnow)
    session_end: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_active(self) -> bool:
        return self.session_end is None

    def token_percentage(self, context_window: int = CONTEXT_WINDOW_TOKENS) -> float:
        """Share of the context window used, in percent."""
        return self.token_count / context_window * 100.0

    def is_near_limit(self, threshold: int = DEFAULT_TOKEN_WARNING) -> bool:
        return self.token_count > threshold


@dataclass
class FactStats:
    """Aggregate counts over a list of facts."""

    total: int = 0
    by_category: dict[FactCategory, int] = field(default_factory=dict)
    high_importance: int = 0
    stale: int = 0

    @classmethod
    def from_facts(cls, facts: list[ExtractedFact]) -> "FactStats":
        counts = Counter(f.category for f in facts)
        return cls(
            total=len(facts),
            by_category=dict(counts),
            high_importance=sum(1 for f in facts if f.is_high_importance()),
            stale=sum(1 for f in facts if f.stale),
        )

    def count_for(self, category: FactCategory) -> int:
        return self.by_category.get(category, 0)
