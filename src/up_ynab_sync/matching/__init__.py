"""Merchant rule matching for payee and category assignment."""

from .engine import (
    CategorizationMatch,
    CategorizationMatcher,
    extract_merchant_pattern,
    match_description,
)
from .learning import (
    CategoryPattern,
    RuleSuggestion,
    analyze_categorization_patterns,
    suggest_merchant_rules,
)

__all__ = [
    "CategorizationMatch",
    "CategorizationMatcher",
    "CategoryPattern",
    "RuleSuggestion",
    "analyze_categorization_patterns",
    "extract_merchant_pattern",
    "match_description",
    "suggest_merchant_rules",
]
