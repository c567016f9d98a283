"""Learn merchant rules from transactions already categorized in YNAB.

YNAB transactions are grouped by a pattern taken from their payee name. For
each group the most common category wins, and the share of the group filed
under it is the starting confidence. Frequent and well-known merchants earn
a bonus.

    "CARD PURCHASE WOOLWORTHS 1234 SYDNEY" -> "WOOLWORTHS"
"""

from __future__ import annotations

import logging
import re
import string
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from up_ynab_sync.schemas.transactions import MerchantRule

if TYPE_CHECKING:
    from up_ynab_sync.schemas.transactions import DestinationTransaction
    from up_ynab_sync.ynab_client import YnabCategory

logger = logging.getLogger(__name__)

KNOWN_MERCHANTS = (
    "COLES", "WOOLWORTHS", "ALDI", "IGA", "FOODWORKS",
    "MCDONALD", "KFC", "SUBWAY", "DOMINOS", "PIZZA",
    "NETFLIX", "SPOTIFY", "AMAZON", "APPLE", "GOOGLE",
    "SHELL", "BP", "CALTEX", "MOBIL", "AMPOL",
    "WESTFIELD", "IKEA", "BUNNINGS", "KMART", "TARGET",
    "PAYPAL", "UBER", "AIRBNB", "BOOKING",
)

_PAYEE_NOISE = ("CARD PURCHASE", "EFTPOS", "VISA", "MASTERCARD", "PAYPAL")

_PATTERN_NOISE = [
    re.compile(r"\d{2}/\d{2}/\d{2,4}"),
    re.compile(r"\d{4}-\d{2}-\d{2}"),
    re.compile(r"\d{4,}"),
]

MIN_PATTERN_LENGTH = 3
MIN_OCCURRENCES = 2
SUGGESTION_FLOOR = 0.6
DEFAULT_CONFIDENCE_THRESHOLD = 0.7
AUTO_APPROVE_CONFIDENCE = 0.9
AUTO_APPROVE_OCCURRENCES = 3


def normalize_payee(payee_name: str) -> str:
    """Uppercase and strip payment-channel noise."""
    cleaned = payee_name.upper()
    for noise in _PAYEE_NOISE:
        cleaned = cleaned.replace(noise, " ")
    return " ".join(cleaned.split())


def payee_pattern(payee_name: str) -> str:
    """The first word of a normalized payee, without dates or reference numbers."""
    words = normalize_payee(payee_name).split()
    if not words:
        return ""

    first = words[0]
    pattern = first
    for noise in _PATTERN_NOISE:
        pattern = noise.sub("", pattern)
    pattern = pattern.strip(string.punctuation).strip()
    return pattern if len(pattern) >= MIN_PATTERN_LENGTH else first


def is_known_merchant(pattern: str) -> bool:
    return any(merchant in pattern for merchant in KNOWN_MERCHANTS)


def score_confidence(consistency: float, occurrences: int, pattern: str) -> float:
    """Category consistency plus bonuses for frequency and known merchants, capped at 1."""
    confidence = consistency
    if occurrences >= 5:
        confidence += 0.1
    if occurrences >= 10:
        confidence += 0.1
    if is_known_merchant(pattern):
        confidence += 0.15
    return min(1.0, confidence)


@dataclass(frozen=True)
class CategoryPattern:
    """How a payee pattern has been categorized in YNAB."""

    pattern: str
    payee_name: str
    category_id: str
    category_name: str
    confidence: float
    transaction_count: int
    consistency: float

    @property
    def is_worth_suggesting(self) -> bool:
        return (
            self.confidence >= SUGGESTION_FLOOR
            and self.transaction_count >= MIN_OCCURRENCES
            and len(self.pattern) >= MIN_PATTERN_LENGTH
        )


@dataclass(frozen=True)
class RuleSuggestion:
    """A merchant rule proposed from a CategoryPattern."""

    source: CategoryPattern
    auto_approve: bool

    @property
    def description(self) -> str:
        p = self.source
        return (
            f"Pattern '{p.pattern}' appears {p.transaction_count} times with "
            f"{int(p.consistency * 100)}% consistency in category '{p.category_name}'"
        )

    def to_rule(self) -> MerchantRule:
        p = self.source
        return MerchantRule(
            pattern=p.pattern,
            payee_name=p.payee_name,
            category_id=p.category_id,
            category_name=p.category_name,
            confidence=round(p.confidence, 2),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.source.pattern,
            "category_id": self.source.category_id,
            "category_name": self.source.category_name,
            "confidence": self.source.confidence,
            "transaction_count": self.source.transaction_count,
            "auto_approve": self.auto_approve,
            "description": self.description,
        }


def analyze_categorization_patterns(
    transactions: Iterable[DestinationTransaction],
    categories: Sequence[YnabCategory] = (),
) -> list[CategoryPattern]:
    """
    Group categorized YNAB transactions by payee pattern.

    Args:
        transactions: YNAB transactions; uncategorized ones and ones without
            a payee are ignored
        categories: Used to name categories the transactions don't name

    Returns:
        Patterns worth suggesting, in first-seen order
    """
    names = {c.id: c.name for c in categories}
    groups: dict[str, list[tuple[str, str, str]]] = {}

    for tx in transactions:
        category_name = tx.category_name or names.get(tx.category_id or "")
        if not tx.payee_name or not tx.category_id or not category_name:
            continue
        pattern = payee_pattern(tx.payee_name)
        if len(pattern) < MIN_PATTERN_LENGTH:
            continue
        groups.setdefault(pattern, []).append((tx.payee_name, tx.category_id, category_name))

    patterns: list[CategoryPattern] = []
    for pattern, members in groups.items():
        if len(members) < MIN_OCCURRENCES:
            continue

        # Ties go to the category seen first
        category_id, votes = Counter(m[1] for m in members).most_common(1)[0]
        in_category = [m for m in members if m[1] == category_id]
        payee_name = Counter(m[0] for m in in_category).most_common(1)[0][0]
        consistency = votes / len(members)

        candidate = CategoryPattern(
            pattern=pattern,
            payee_name=payee_name,
            category_id=category_id,
            category_name=in_category[0][2],
            confidence=score_confidence(consistency, len(members), pattern),
            transaction_count=len(members),
            consistency=consistency,
        )
        if candidate.is_worth_suggesting:
            patterns.append(candidate)

    logger.info("Found %d pattern(s) worth suggesting in %d group(s)", len(patterns), len(groups))
    return patterns


def suggest_merchant_rules(
    patterns: Iterable[CategoryPattern],
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    existing_rules: Sequence[MerchantRule] = (),
) -> list[RuleSuggestion]:
    """Suggestions at or above the threshold, most confident first.

    Patterns that already have a rule are left alone.
    """
    taken = {rule.pattern.upper() for rule in existing_rules}
    suggestions = [
        RuleSuggestion(
            source=p,
            auto_approve=(
                p.confidence >= AUTO_APPROVE_CONFIDENCE
                and p.transaction_count >= AUTO_APPROVE_OCCURRENCES
            ),
        )
        for p in patterns
        if p.confidence >= threshold and p.pattern.upper() not in taken
    ]
    return sorted(suggestions, key=lambda s: s.source.confidence, reverse=True)
