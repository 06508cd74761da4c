"""
Tests for the reconciliation matcher.
"""
from decimal import Decimal

import pytest

from estimate_audit.exceptions import ComparisonCancelledError
from estimate_audit.supplement_engine.context import AnalysisContext, ComparisonOptions
from estimate_audit.supplement_engine.matching import (
    DescriptionMatcher,
    ReconciliationMatcher,
    price_range_similarity,
)
from estimate_audit.supplement_engine.models import MatchingAlgorithm


class TestDescriptionMatcher:
    """Tests for description similarity."""

    @pytest.fixture
    def matcher(self) -> DescriptionMatcher:
        return DescriptionMatcher()

    def test_exact_form(self, matcher: DescriptionMatcher):
        """Test exact form only folds case and whitespace."""
        assert matcher.exact_form("  Front   BUMPER ") == "front bumper"

    def test_fuzzy_form_expands_abbreviations(self, matcher: DescriptionMatcher):
        """Test estimate abbreviations and stop words."""
        assert matcher.fuzzy_form("Frt Bumper Cvr, LH") == "front bumper cover left"
        assert matcher.fuzzy_form("Cover for the hood") == "cover hood"

    def test_fuzzy_score(self, matcher: DescriptionMatcher):
        """Test Levenshtein ratio."""
        assert matcher.fuzzy_score("hood", "hood") == 1.0
        assert matcher.fuzzy_score("", "") == 1.0
        assert matcher.fuzzy_score("hood", "") == 0.0
        assert matcher.fuzzy_score("kitten", "sitting") == pytest.approx(1 - 3 / 7)


class TestPriceRangeSimilarity:
    """Tests for price similarity."""

    def test_equal_prices(self):
        assert price_range_similarity(Decimal("100"), Decimal("100")) == 1.0
        assert price_range_similarity(Decimal("0"), Decimal("0")) == 1.0

    def test_partial(self):
        assert price_range_similarity(Decimal("100"), Decimal("120")) == pytest.approx(1 - 20 / 55)

    def test_beyond_band(self):
        assert price_range_similarity(Decimal("100"), Decimal("300")) == 0.0


class TestReconciliationMatcher:
    """Tests for reconciliation."""

    @pytest.fixture
    def matcher(self) -> ReconciliationMatcher:
        return ReconciliationMatcher()

    def test_exact_description_matches(self, matcher, make_item, context):
        """Test identical descriptions pair with a perfect score."""
        original = [make_item("o1", "Front Bumper", "100")]
        revised = [make_item("r1", "Front Bumper", "150")]

        result = matcher.reconcile(original, revised, context)

        assert len(result.matched_pairs) == 1
        pair = result.matched_pairs[0]
        assert pair.original.id == "o1"
        assert pair.revised.id == "r1"
        assert pair.match_score == 1.0
        assert pair.match_criteria.exact_description == 1.0
        assert result.matching_accuracy == 1.0

    def test_conflicting_hints_and_prices_do_not_match(self, matcher, make_item, context):
        """Test same description with different hints and distant prices stays unmatched."""
        original = [make_item("o1", "Front Bumper", "100", category_hint="OEM")]
        revised = [make_item("r1", "Front Bumper", "300", category_hint="AFTERMARKET")]

        result = matcher.reconcile(original, revised, context)

        assert result.matched_pairs == []
        assert [o.id for o in result.unmatched_original] == ["o1"]
        assert [r.id for r in result.new_supplement_items] == ["r1"]
        assert result.matching_accuracy == 0.0

    def test_fuzzy_match_below_default_threshold(self, matcher, make_item, context):
        """Test a reworded description needs a lower threshold to pair."""
        original = [make_item("o1", "Frt Bumper Cvr", "100")]
        revised = [make_item("r1", "Front Bumper Cover", "100")]

        assert matcher.reconcile(original, revised, context).matched_pairs == []

        relaxed = AnalysisContext(options=ComparisonOptions(fuzzy_threshold=0.5))
        result = matcher.reconcile(original, revised, relaxed)
        assert len(result.matched_pairs) == 1
        assert result.matched_pairs[0].match_score == pytest.approx(0.6)

    def test_exact_algorithm_ignores_fuzzy_candidates(self, matcher, make_item):
        """Test exact matching never pairs differing descriptions."""
        context = AnalysisContext(options=ComparisonOptions(
            matching_algorithm=MatchingAlgorithm.EXACT, fuzzy_threshold=0.0,
        ))
        original = [make_item("o1", "Frt Bumper Cvr"), make_item("o2", "Hood")]
        revised = [make_item("r1", "Front Bumper Cover"), make_item("r2", "hood")]

        result = matcher.reconcile(original, revised, context)

        assert [(p.original.id, p.revised.id) for p in result.matched_pairs] == [("o2", "r2")]

    def test_fuzzy_algorithm_has_no_shortcut(self, matcher, make_item):
        """Test fuzzy scoring weighs every component."""
        context = AnalysisContext(options=ComparisonOptions(matching_algorithm="fuzzy"))
        original = [make_item("o1", "Hood", "100")]
        revised = [make_item("r1", "Hood", "120")]

        result = matcher.reconcile(original, revised, context)

        assert result.matched_pairs[0].match_score == pytest.approx(0.4 + 0.3 + 0.2 + 0.1 * (1 - 20 / 55), abs=1e-4)

    def test_tie_break_by_original_id_and_ambiguity(self, matcher, make_item, context):
        """Test equal candidates resolve to the smallest original id and are flagged."""
        original = [make_item("o2", "Door handle"), make_item("o1", "Door handle")]
        revised = [make_item("r1", "Door handle")]

        result = matcher.reconcile(original, revised, context)

        pair = result.matched_pairs[0]
        assert pair.original.id == "o1"
        assert pair.is_ambiguous
        assert pair.alternative_original_ids == ["o2"]
        assert [o.id for o in result.unmatched_original] == ["o2"]
        assert result.ambiguous_pairs == [pair]

    def test_best_score_wins(self, matcher, make_item, context):
        """Test the perfect candidate wins over a weaker one without ambiguity."""
        original = [
            make_item("o1", "Hood", "180", category_hint="AFTERMARKET"),
            make_item("o2", "Hood", "200", category_hint="OEM"),
        ]
        revised = [make_item("r1", "Hood", "200", category_hint="OEM")]

        result = matcher.reconcile(original, revised, context)

        assert result.matched_pairs[0].original.id == "o2"
        assert not result.matched_pairs[0].is_ambiguous
        assert [o.id for o in result.unmatched_original] == ["o1"]

    def test_tie_break_by_revised_id(self, matcher, make_item, context):
        """Test equal revised candidates for one original resolve to the smallest revised id."""
        original = [make_item("o1", "Hood")]
        revised = [make_item("r2", "Hood"), make_item("r1", "Hood")]

        result = matcher.reconcile(original, revised, context)

        assert [(p.original.id, p.revised.id) for p in result.matched_pairs] == [("o1", "r1")]
        assert not result.matched_pairs[0].is_ambiguous
        assert [r.id for r in result.new_supplement_items] == ["r2"]

    def test_stronger_revised_item_claims_original(self, matcher, make_item, context):
        """Test the revised item with the higher score takes a contested original."""
        original = [make_item("o1", "Hood", "200", category_hint="OEM")]
        revised = [
            make_item("r1", "Hood", "180", category_hint="AFTERMARKET"),
            make_item("r2", "Hood", "200", category_hint="OEM"),
        ]

        result = matcher.reconcile(original, revised, context)

        pair = result.matched_pairs[0]
        assert (pair.original.id, pair.revised.id) == ("o1", "r2")
        assert pair.match_score == 1.0
        assert [r.id for r in result.new_supplement_items] == ["r1"]

    def test_partition(self, matcher, make_item, context):
        """Test every item lands in exactly one bucket and no item is reused."""
        original = [
            make_item("o1", "Hood"), make_item("o2", "Hood"), make_item("o3", "Fender"),
            make_item("o4", "Grille"),
        ]
        revised = [
            make_item("r1", "Hood"), make_item("r2", "Fender"), make_item("r3", "Radiator"),
        ]

        result = matcher.reconcile(original, revised, context)

        matched_original = [p.original.id for p in result.matched_pairs]
        matched_revised = [p.revised.id for p in result.matched_pairs]
        assert len(set(matched_original)) == len(matched_original)
        assert len(set(matched_revised)) == len(matched_revised)
        assert sorted(matched_original + [o.id for o in result.unmatched_original]) == ["o1", "o2", "o3", "o4"]
        assert sorted(matched_revised + [r.id for r in result.new_supplement_items]) == ["r1", "r2", "r3"]
        assert result.matching_accuracy == 0.5
        for pair in result.matched_pairs:
            assert 0.0 <= pair.match_score <= 1.0

    def test_empty_inputs(self, matcher, make_item, context):
        """Test one empty side yields no pairs."""
        result = matcher.reconcile([], [make_item("r1", "New Part", "200")], context)
        assert result.matched_pairs == []
        assert [r.id for r in result.new_supplement_items] == ["r1"]

    def test_parallel_matrix_matches_serial(self, matcher, make_item):
        """Test threaded matrix construction gives the same result."""
        original = [make_item(f"o{i}", f"Panel {i % 30}", str(100 + i)) for i in range(70)]
        revised = [make_item(f"r{i}", f"Panel {i % 35}", str(100 + i)) for i in range(70)]

        serial = AnalysisContext(options=ComparisonOptions(fuzzy_threshold=0.5))
        parallel = AnalysisContext(options=ComparisonOptions(
            fuzzy_threshold=0.5, matrix_workers=4, parallel_matrix_min_cells=1,
        ))

        assert matcher.build_matrix(original, revised, serial) == matcher.build_matrix(original, revised, parallel)

        serial_pairs = matcher.reconcile(original, revised, serial).matched_pairs
        parallel_pairs = matcher.reconcile(original, revised, parallel).matched_pairs
        assert [(p.original.id, p.revised.id, p.match_score) for p in serial_pairs] == [
            (p.original.id, p.revised.id, p.match_score) for p in parallel_pairs
        ]

    def test_cancelled_context(self, matcher, make_item, context):
        """Test a cancelled run stops during matrix construction."""
        context.cancel()
        with pytest.raises(ComparisonCancelledError):
            matcher.reconcile([make_item("o1", "Hood")], [make_item("r1", "Hood")], context)

    @pytest.mark.parametrize("score,threshold,expected", [
        (0.7, 0.7, False),
        (0.7001, 0.7, True),
        (1.0, 1.0, True),
        (0.5, 0.0, True),
    ])
    def test_clears_threshold(self, score, threshold, expected):
        """Test threshold comparison."""
        assert ReconciliationMatcher.clears_threshold(score, threshold) is expected
