"""Root-cause categories and the signature rule table.

Rules are evaluated in priority order against failure signatures; the
first match decides the category.  The table is plain data so each rule
can be exercised on its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class FlakinessCategory(str, Enum):
    """Likely root cause of a flaky test."""

    THREAD_SAFETY = "THREAD_SAFETY"
    RESOURCE_CONTENTION = "RESOURCE_CONTENTION"
    TIMING = "TIMING"
    EXTERNAL_DEPENDENCY = "EXTERNAL_DEPENDENCY"
    ENVIRONMENT_DEPENDENCY = "ENVIRONMENT_DEPENDENCY"
    ASSERTION_SENSITIVITY = "ASSERTION_SENSITIVITY"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class CategoryRule:
    """One row of the rule table."""

    category: FlakinessCategory
    pattern: re.Pattern

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _rule(category: FlakinessCategory, pattern: str) -> CategoryRule:
    return CategoryRule(category, re.compile(pattern, re.IGNORECASE))


# Priority order matters: the first matching rule wins
RULES: tuple[CategoryRule, ...] = (
    _rule(
        FlakinessCategory.THREAD_SAFETY,
        r"ConcurrentModificationException|Deadlock|race condition|IllegalMonitorState",
    ),
    _rule(
        FlakinessCategory.RESOURCE_CONTENTION,
        r"OutOfMemory|connection pool|too many open files|Connection refused",
    ),
    _rule(
        FlakinessCategory.TIMING,
        r"Timed out|Thread\.sleep|wait condition|SocketTimeoutException",
    ),
    _rule(
        FlakinessCategory.EXTERNAL_DEPENDENCY,
        r"http://|https://|service unavailable|endpoint",
    ),
    _rule(
        FlakinessCategory.ENVIRONMENT_DEPENDENCY,
        r"environment variable|System\.getProperty|getenv|configuration",
    ),
    _rule(
        FlakinessCategory.ASSERTION_SENSITIVITY,
        r"AssertionError|expected:.*but was",
    ),
)


def matching_categories(
    signatures: list[str] | str,
    rules: tuple[CategoryRule, ...] = RULES,
) -> list[FlakinessCategory]:
    """Return every category whose rule matches, in priority order."""
    text = signatures if isinstance(signatures, str) else "\n".join(signatures)
    return [rule.category for rule in rules if rule.matches(text)]


def classify(
    signatures: list[str] | str,
    rules: tuple[CategoryRule, ...] = RULES,
) -> FlakinessCategory:
    """Pick the category of the highest-priority matching rule.

    Args:
        signatures: Failure signatures of all failing runs, or one text.
        rules: Rule table, highest priority first.

    Returns:
        The first matching category, or UNKNOWN.
    """
    matched = matching_categories(signatures, rules)
    return matched[0] if matched else FlakinessCategory.UNKNOWN
