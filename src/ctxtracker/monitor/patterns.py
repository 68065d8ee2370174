"""Compiled text-matching rules for fact categories."""

import re
from dataclasses import dataclass
from functools import lru_cache

from ..models import FactCategory

SOURCE_EXTENSIONS = ("rs", "ts", "tsx", "js", "jsx", "py", "go", "java", "cpp", "h", "c", "cs")

# (category, pattern, base importance), in emission order.
DEFAULT_RULES: tuple[tuple[FactCategory, str, int], ...] = (
    (
        FactCategory.DECISION,
        r"decided to|chose to|going with|will use|opted for",
        4,
    ),
    (
        FactCategory.BLOCKER,
        r"blocked by|can't proceed|cannot continue|error:|failed to|exception",
        5,
    ),
    (
        FactCategory.TODO,
        r"todo:|fixme:|need to|should|must|have to",
        3,
    ),
    (
        FactCategory.FILE_CHANGE,
        # verb, then anything (quotes and backticks included), then a source extension
        r"\b(?:creat|modif|updat|delet|remov)\w*\s+.*?\.(?:"
        + "|".join(SOURCE_EXTENSIONS)
        + r")\b",
        3,
    ),
    (
        FactCategory.DEPENDENCY,
        r"installed|added|npm install|yarn add|pnpm add|cargo add|pip install"
        r"|poetry add|uv add|go get",
        4,
    ),
    (
        FactCategory.INSIGHT,
        r"discovered|found that|learned that|note that|important:",
        3,
    ),
)


@lru_cache(maxsize=None)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


@dataclass(frozen=True)
class CategoryRule:
    """A compiled matching rule for one category."""

    category: FactCategory
    pattern: re.Pattern[str]
    base_importance: int

    def matches(self, line: str) -> bool:
        return self.pattern.search(line) is not None


class PatternRegistry:
    """Holds one compiled rule per fact category.

    Rules are compiled once per distinct pattern for the life of the process,
    so constructing several registries is cheap. A registry is read-only after
    construction and can be shared between threads.
    """

    def __init__(
        self,
        rules: tuple[tuple[FactCategory, str, int], ...] = DEFAULT_RULES,
    ) -> None:
        """Initialize the registry.

        Args:
            rules: (category, regex, base importance) triples in the order
                candidates should be emitted.

        Raises:
            ValueError: If a category appears twice or a base importance is
                outside 1-5.
        """
        seen: set[FactCategory] = set()
        compiled: list[CategoryRule] = []
        for category, pattern, base in rules:
            if category in seen:
                raise ValueError(f"Duplicate rule for category '{category.value}'")
            if not 1 <= base <= 5:
                raise ValueError(f"Base importance for '{category.value}' must be 1-5")
            seen.add(category)
            compiled.append(CategoryRule(category, _compile(pattern), base))
        self._rules = tuple(compiled)

    @property
    def rules(self) -> tuple[CategoryRule, ...]:
        return self._rules

    @property
    def categories(self) -> list[FactCategory]:
        return [rule.category for rule in self._rules]

    def get(self, category: FactCategory) -> CategoryRule | None:
        """Get the rule for a category."""
        for rule in self._rules:
            if rule.category is category:
                return rule
        return None

    def base_importance(self, category: FactCategory) -> int:
        """Base importance for a category; 3 if the registry has no rule for it."""
        rule = self.get(category)
        return rule.base_importance if rule else 3

    def __len__(self) -> int:
        return len(self._rules)
