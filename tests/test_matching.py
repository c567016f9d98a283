"""Tests for merchant rule categorization."""

from up_ynab_sync.matching import (
    CategorizationMatcher,
    analyze_categorization_patterns,
    extract_merchant_pattern,
    match_description,
    suggest_merchant_rules,
)
from up_ynab_sync.matching.learning import normalize_payee, payee_pattern, score_confidence
from up_ynab_sync.schemas.transactions import DestinationTransaction, MerchantRule
from up_ynab_sync.ynab_client import YnabCategory


class TestMatchDescription:
    """Rule selection."""

    def test_no_rules_returns_description(self):
        """No match keeps the raw description with zero confidence."""
        match = match_description("Coffee Shop", [])
        assert match.matched is False
        assert match.payee_name == "Coffee Shop"
        assert match.category_id is None
        assert match.confidence == 0.0

    def test_substring_match_is_case_insensitive(self):
        rule = MerchantRule(pattern="woolworths", payee_name="Woolworths", category_id="cat-groceries")
        match = match_description("WOOLWORTHS 1234 SYDNEY", [rule])
        assert match.matched is True
        assert match.payee_name == "Woolworths"
        assert match.category_id == "cat-groceries"
        assert match.confidence == 1.0

    def test_whitespace_differences_ignored(self):
        rule = MerchantRule(pattern="coffee  shop", payee_name="Cafe")
        assert match_description("Coffee Shop Newtown", [rule]).matched is True

    def test_higher_priority_wins_regardless_of_order(self):
        """Priority 10 beats priority 5 whichever is registered first."""
        low = MerchantRule(pattern="UBER", payee_name="Uber", category_id="cat-transport", priority=5)
        high = MerchantRule(
            pattern="UBER EATS", payee_name="Uber Eats", category_id="cat-takeaway", priority=10
        )

        assert match_description("UBER EATS SYDNEY", [low, high]).category_id == "cat-takeaway"
        assert match_description("UBER EATS SYDNEY", [high, low]).category_id == "cat-takeaway"

    def test_tie_goes_to_first_registered(self):
        first = MerchantRule(pattern="SHELL", payee_name="Shell", category_id="cat-fuel")
        second = MerchantRule(pattern="COLES EXPRESS", payee_name="Coles Express", category_id="cat-groceries")

        match = match_description("SHELL COLES EXPRESS", [first, second])
        assert match.rule is first

        match = match_description("SHELL COLES EXPRESS", [second, first])
        assert match.rule is second

    def test_regex_rule(self):
        rule = MerchantRule(pattern=r"^TRANSFER (TO|FROM) ", payee_name="Transfer", is_regex=True)
        assert match_description("Transfer to Savings", [rule]).matched is True
        assert match_description("Refund transfer", [rule]).matched is False

    def test_invalid_regex_never_matches(self):
        rule = MerchantRule(pattern="([", payee_name="Broken", is_regex=True)
        assert match_description("anything", [rule]).matched is False

    def test_confidence_carried_from_rule(self):
        rule = MerchantRule(pattern="ALDI", payee_name="Aldi", category_id="cat-groceries", confidence=0.5)
        match = match_description("ALDI STORES", [rule])
        assert match.confidence == 0.5
        assert match.meets_threshold(0.7) is False
        assert match.meets_threshold(0.5) is True

    def test_deterministic(self):
        rules = [
            MerchantRule(pattern="A", payee_name="A", priority=1),
            MerchantRule(pattern="AB", payee_name="AB", priority=1),
        ]
        results = {match_description("ABC", rules).payee_name for _ in range(20)}
        assert results == {"A"}


class TestCategorizationMatcher:
    def test_matcher_wraps_rules(self):
        matcher = CategorizationMatcher(
            [MerchantRule(pattern="NETFLIX", payee_name="Netflix", category_id="cat-subs")]
        )
        assert len(matcher) == 1
        assert matcher.match("NETFLIX.COM").payee_name == "Netflix"
        assert matcher.match("Spotify").matched is False

    def test_match_to_dict(self):
        matcher = CategorizationMatcher([MerchantRule(pattern="X", payee_name="Y")])
        data = matcher.match("X").to_dict()
        assert data["payee_name"] == "Y"
        assert data["rule"]["pattern"] == "X"


class TestExtractMerchantPattern:
    def test_strips_card_noise_and_numbers(self):
        assert extract_merchant_pattern("CARD PURCHASE WOOLWORTHS 1234 SYDNEY 12/03") == "WOOLWORTHS"

    def test_strips_paypal_prefix(self):
        assert extract_merchant_pattern("PAYPAL *NETFLIX") == "NETFLIX"

    def test_eftpos_and_visa(self):
        assert extract_merchant_pattern("EFTPOS VISA Bunnings Warehouse") == "BUNNINGS"

    def test_short_words_fall_back_to_cleaned_text(self):
        assert extract_merchant_pattern("EFTPOS AB 12") == "AB 12"

    def test_empty(self):
        assert extract_merchant_pattern("") == ""


def ynab_transaction(payee, category_id, category_name=None, n=0):
    return DestinationTransaction(
        id=f"{payee}-{category_id}-{n}",
        account_id="ynab-spending",
        date="2024-03-01",
        amount=-10000,
        payee_name=payee,
        category_id=category_id,
        category_name=category_name,
    )


def repeated(count, payee, category_id, category_name=None):
    return [ynab_transaction(payee, category_id, category_name, n) for n in range(count)]


class TestPayeePattern:
    def test_normalize_strips_channel_noise(self):
        assert normalize_payee("card purchase  Woolworths Metro") == "WOOLWORTHS METRO"
        assert normalize_payee("PAYPAL *Spotify") == "*SPOTIFY"

    def test_first_word_without_reference_numbers(self):
        assert payee_pattern("EFTPOS COLES1234 Sydney") == "COLES"
        assert payee_pattern("Woolworths Metro") == "WOOLWORTHS"
        assert payee_pattern("PAYPAL *Spotify") == "SPOTIFY"

    def test_short_pattern_keeps_first_word(self):
        assert payee_pattern("BP Connect") == "BP"

    def test_empty(self):
        assert payee_pattern("") == ""


class TestScoreConfidence:
    def test_consistency_is_the_base(self):
        assert score_confidence(0.5, 2, "CORNER") == 0.5

    def test_frequency_bonus(self):
        assert score_confidence(0.5, 5, "CORNER") == 0.6
        assert round(score_confidence(0.5, 10, "CORNER"), 2) == 0.7

    def test_known_merchant_bonus_capped(self):
        assert round(score_confidence(0.6, 2, "WOOLWORTHS"), 2) == 0.75
        assert score_confidence(1.0, 12, "WOOLWORTHS") == 1.0


class TestAnalyzeCategorizationPatterns:
    def test_groups_by_pattern_and_picks_majority_category(self):
        transactions = [
            *repeated(3, "Woolworths Metro", "cat-groceries", "Groceries"),
            ynab_transaction("WOOLWORTHS 1234", "cat-household", "Household"),
        ]

        (pattern,) = analyze_categorization_patterns(transactions)

        assert pattern.pattern == "WOOLWORTHS"
        assert pattern.category_id == "cat-groceries"
        assert pattern.category_name == "Groceries"
        assert pattern.payee_name == "Woolworths Metro"
        assert pattern.transaction_count == 4
        assert pattern.consistency == 0.75
        assert round(pattern.confidence, 2) == 0.9

    def test_single_occurrence_ignored(self):
        assert analyze_categorization_patterns([ynab_transaction("Netflix", "cat-subs", "Subs")]) == []

    def test_uncategorized_and_payeeless_ignored(self):
        transactions = [
            *repeated(3, "Corner Cafe", None),
            *repeated(3, "", "cat-eating", "Eating Out"),
        ]
        assert analyze_categorization_patterns(transactions) == []

    def test_category_name_from_category_list(self):
        categories = [YnabCategory("cat-eating", "Eating Out", "Everyday")]

        (pattern,) = analyze_categorization_patterns(repeated(2, "Corner Cafe", "cat-eating"), categories)

        assert pattern.category_name == "Eating Out"

    def test_inconsistent_pattern_not_worth_suggesting(self):
        transactions = [
            ynab_transaction("Corner Cafe", "cat-eating", "Eating Out"),
            ynab_transaction("Corner Store", "cat-groceries", "Groceries"),
            ynab_transaction("Corner Bar", "cat-fun", "Fun"),
        ]
        assert analyze_categorization_patterns(transactions) == []


class TestSuggestMerchantRules:
    def patterns(self):
        return analyze_categorization_patterns(
            [
                *repeated(3, "Woolworths Metro", "cat-groceries", "Groceries"),
                *repeated(2, "Corner Cafe", "cat-eating", "Eating Out"),
                *repeated(2, "Gym Direct", "cat-health", "Health"),
                ynab_transaction("Gym Direct", "cat-fun", "Fun"),
            ]
        )

    def test_threshold_and_order(self):
        suggestions = suggest_merchant_rules(self.patterns())

        assert [s.source.pattern for s in suggestions] == ["WOOLWORTHS", "CORNER"]
        woolworths, corner = suggestions
        assert woolworths.auto_approve is True
        assert corner.auto_approve is False
        assert corner.description == (
            "Pattern 'CORNER' appears 2 times with 100% consistency in category 'Eating Out'"
        )

    def test_lower_threshold_includes_weaker_patterns(self):
        suggestions = suggest_merchant_rules(self.patterns(), threshold=0.6)
        assert [s.source.pattern for s in suggestions][-1] == "GYM"

    def test_existing_rules_excluded(self):
        existing = [MerchantRule(pattern="Woolworths", payee_name="Woolies")]
        suggestions = suggest_merchant_rules(self.patterns(), existing_rules=existing)
        assert [s.source.pattern for s in suggestions] == ["CORNER"]

    def test_to_rule(self):
        rule = suggest_merchant_rules(self.patterns())[0].to_rule()
        assert rule == MerchantRule(
            pattern="WOOLWORTHS",
            payee_name="Woolworths Metro",
            category_id="cat-groceries",
            category_name="Groceries",
            confidence=1.0,
        )
