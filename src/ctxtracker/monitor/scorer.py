"""Importance scoring and staleness detection for extracted facts."""

from datetime import datetime, timedelta, timezone

from ..models import ExtractedFact, FactCategory, clamp_importance

BASE_IMPORTANCE: dict[FactCategory, int] = {
    FactCategory.BLOCKER: 5,
    FactCategory.DECISION: 4,
    FactCategory.DEPENDENCY: 4,
    FactCategory.FILE_CHANGE: 3,
    FactCategory.TODO: 3,
    FactCategory.INSIGHT: 3,
}

# Each group adds +1 when any of its keywords appears.
CONTENT_BONUS_KEYWORDS: tuple[tuple[str, ...], ...] = (
    ("critical", "urgent", "blocker", "security"),
    ("breaking", "incompatible"),
    ("slow", "performance", "optimization"),
)
LONG_CONTENT_CHARS = 200
MAX_CONTENT_BONUS = 2

RECENT_AGE = timedelta(hours=1)
TODAY_AGE = timedelta(hours=24)

COMPLETION_KEYWORDS = ("resolved", "fixed", "done", "completed", "finished", "merged", "closed")

STALENESS_HORIZONS: dict[FactCategory, timedelta] = {
    FactCategory.BLOCKER: timedelta(days=3),
    FactCategory.TODO: timedelta(days=14),
    FactCategory.FILE_CHANGE: timedelta(days=30),
    FactCategory.DEPENDENCY: timedelta(days=90),
    FactCategory.INSIGHT: timedelta(days=90),
    FactCategory.DECISION: timedelta(days=180),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ImportanceScorer:
    """Computes a 1-5 importance score from category, content, and age.

    score = base(category) + content_bonus (capped at +2) + recency_bonus,
    clamped to 1-5.
    """

    def __init__(self, base_importance: dict[FactCategory, int] | None = None) -> None:
        self.base_importance = dict(BASE_IMPORTANCE)
        if base_importance:
            self.base_importance.update(base_importance)

    def score(
        self,
        category: FactCategory,
        content: str,
        created_at: datetime,
        now: datetime | None = None,
    ) -> int:
        """Score a fact.

        Args:
            category: The fact category.
            content: The fact text.
            created_at: When the fact was created.
            now: Evaluation instant; defaults to the current time.

        Returns:
            Importance in 1-5.
        """
        total = (
            self.base(category)
            + self.content_bonus(content)
            + self.recency_bonus(created_at, now)
        )
        return clamp_importance(total)

    def score_fact(self, fact: ExtractedFact, now: datetime | None = None) -> int:
        return self.score(fact.category, fact.content, fact.created_at, now)

    def base(self, category: FactCategory) -> int:
        return self.base_importance.get(category, 3)

    @staticmethod
    def content_bonus(content: str) -> int:
        lowered = content.lower()
        bonus = sum(
            1 for keywords in CONTENT_BONUS_KEYWORDS
            if any(keyword in lowered for keyword in keywords)
        )
        if len(content) > LONG_CONTENT_CHARS:
            bonus += 1
        return min(bonus, MAX_CONTENT_BONUS)

    @staticmethod
    def recency_bonus(created_at: datetime, now: datetime | None = None) -> int:
        age = (now or _now()) - created_at
        if age < RECENT_AGE:
            return 1
        if age < TODAY_AGE:
            return 0
        return -1


class StalenessDetector:
    """Decides whether a fact is no longer relevant.

    A fact is stale when its content mentions completion ("resolved",
    "fixed", ...) or when it is older than its category's horizon. The check
    has no side effects; callers persist the flag.
    """

    def __init__(self, horizons: dict[FactCategory, timedelta] | None = None) -> None:
        self.horizons = dict(STALENESS_HORIZONS)
        if horizons:
            self.horizons.update(horizons)

    def is_stale(self, fact: ExtractedFact, now: datetime | None = None) -> bool:
        """Check whether a fact should be marked stale.

        Args:
            fact: Snapshot of the fact.
            now: Evaluation instant; defaults to the current time.

        Returns:
            True if the fact is stale.
        """
        if self.has_completion_keyword(fact.content):
            return True
        horizon = self.horizons.get(fact.category)
        if horizon is None:
            return False
        return fact.age(now or _now()) > horizon

    @staticmethod
    def has_completion_keyword(content: str) -> bool:
        lowered = content.lower()
        return any(keyword in lowered for keyword in COMPLETION_KEYWORDS)
