"""Merchant rule categorization.

Maps a transaction description to a payee name and YNAB category using the
user's merchant rules. Matching is deterministic: every rule whose predicate
holds is a candidate, the highest priority wins, and among equal priorities
the rule registered first wins.

Whether categorization runs at all, and whether a low-confidence category is
applied, is the caller's decision (see CategorizationSettings).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from up_ynab_sync.schemas.transactions import MerchantRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategorizationMatch:
    """Result of matching a description against merchant rules."""

    payee_name: str
    category_id: str | None = None
    category_name: str | None = None
    confidence: float = 0.0
    rule: MerchantRule | None = None

    @property
    def matched(self) -> bool:
        return self.rule is not None

    def meets_threshold(self, threshold: float) -> bool:
        return self.matched and self.confidence >= threshold

    def to_dict(self) -> dict[str, Any]:
        return {
            "payee_name": self.payee_name,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "confidence": self.confidence,
            "rule": self.rule.to_dict() if self.rule else None,
        }


def match_description(description: str, rules: Sequence[MerchantRule]) -> CategorizationMatch:
    """
    Match a description against rules.

    Args:
        description: Transaction description
        rules: Rules in registration order

    Returns:
        The winning rule's payee/category/confidence, or the raw description
        with no category and zero confidence when nothing matches.
    """
    best: MerchantRule | None = None
    for rule in rules:
        if not rule.matches(description):
            continue
        # Strictly greater keeps the first registered rule on ties
        if best is None or rule.priority > best.priority:
            best = rule

    if best is None:
        return CategorizationMatch(payee_name=description)

    logger.debug(
        "Description %r matched rule %r (priority=%d, confidence=%.2f)",
        description,
        best.pattern,
        best.priority,
        best.confidence,
    )
    return CategorizationMatch(
        payee_name=best.payee_name or description,
        category_id=best.category_id,
        category_name=best.category_name,
        confidence=best.confidence,
        rule=best,
    )


class CategorizationMatcher:
    """Holds the rule set loaded for one run."""

    def __init__(self, rules: Sequence[MerchantRule] = ()) -> None:
        self.rules: tuple[MerchantRule, ...] = tuple(rules)

    def __len__(self) -> int:
        return len(self.rules)

    def match(self, description: str) -> CategorizationMatch:
        return match_description(description, self.rules)


# Card network and payment-channel noise in Up raw text
_NOISE_PATTERNS = [
    re.compile(r"\bCARD PURCHASE\b"),
    re.compile(r"\bEFTPOS\b"),
    re.compile(r"\bVISA\b"),
    re.compile(r"\bMASTERCARD\b"),
    re.compile(r"\bPAYPAL\s*\*?"),
    re.compile(r"\b\d{1,2}/\d{1,2}(/\d{2,4})?\b"),  # dates
    re.compile(r"\b\d{4,}\b"),  # card/reference numbers
    re.compile(r"[*#]"),
]

_MIN_PATTERN_LENGTH = 3


def extract_merchant_pattern(text: str) -> str:
    """
    Extract a reusable rule pattern from a description or raw bank text.

    "CARD PURCHASE WOOLWORTHS 1234 SYDNEY 12/03" -> "WOOLWORTHS"

    Returns:
        The first meaningful word, or the cleaned text if no word is long
        enough. Empty string for empty input.
    """
    cleaned = (text or "").upper()
    for pattern in _NOISE_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)

    words = cleaned.split()
    for word in words:
        if len(word) >= _MIN_PATTERN_LENGTH and not word.isdigit():
            return word

    return " ".join(words)
