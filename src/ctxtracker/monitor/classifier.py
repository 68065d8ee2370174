"""Rule-based fact classification of assistant messages."""

from dataclasses import dataclass

from ..models import FactCategory
from .patterns import PatternRegistry


@dataclass(frozen=True)
class Candidate:
    """A fact candidate produced by the classifier, not yet persisted.

    Attributes:
        category: Category whose rule matched.
        importance_base: Base importance of that category.
        content: The full (trimmed) line that matched.
    """

    category: FactCategory
    importance_base: int
    content: str


class FactClassifier:
    """Applies a PatternRegistry to text, one line at a time.

    Categories are not mutually exclusive: a line matching several rules
    yields one candidate per matching category.
    """

    def __init__(self, registry: PatternRegistry) -> None:
        self.registry = registry

    def classify(self, line: str) -> list[tuple[FactCategory, int]]:
        """Classify a single line.

        Args:
            line: The text to match.

        Returns:
            (category, base importance) for every matching rule, in registry
            order. Empty if nothing matched.
        """
        return [
            (rule.category, rule.base_importance)
            for rule in self.registry.rules
            if rule.matches(line)
        ]

    def extract(self, text: str) -> list[Candidate]:
        """Extract candidates from a (possibly multi-line) message.

        Blank lines are skipped. Candidates follow line order, and within a
        line, registry order.
        """
        candidates: list[Candidate] = []
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            for category, base in self.classify(line):
                candidates.append(Candidate(category, base, line))
        return candidates
