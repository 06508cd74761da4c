"""
Tests for suspicious billing pattern detection.
"""
from decimal import Decimal

import pytest

from estimate_audit.supplement_engine.matching import ReconciliationMatcher
from estimate_audit.supplement_engine.models import PatternType, SeverityLevel, VehicleSystem
from estimate_audit.supplement_engine.patterns import (
    SuspiciousPatternDetector,
    benford_test,
    first_digit,
    max_reasonable_labor_hours,
    z_score_severity,
)


@pytest.fixture
def detect(context):
    """Reconcile two item lists and run the detectors."""

    def run(original, revised):
        reconciliation = ReconciliationMatcher().reconcile(original, revised, context)
        patterns = SuspiciousPatternDetector().detect(reconciliation, context)
        return {p.pattern_type: p for p in patterns}

    return run


class TestSuspiciousPatternDetector:
    """Tests for each detector."""

    def test_clean_supplement(self, detect, make_item):
        """Test an unchanged estimate raises nothing."""
        assert detect([make_item("o1", "Hood", "97.35")], [make_item("r1", "Hood", "97.35")]) == {}

    def test_duplicate_items(self, detect, make_item):
        """Test a description billed twice on the revised estimate."""
        patterns = detect([], [make_item("r1", "Hood", "300"), make_item("r2", "hood.", "310")])

        duplicate = patterns[PatternType.DUPLICATE_ITEMS]
        assert duplicate.affected_item_ids == ["r1", "r2"]
        assert duplicate.potential_impact == Decimal("310")
        assert duplicate.vehicle_systems == [VehicleSystem.BODY]

    def test_round_number_bias(self, detect, make_item):
        """Test re-priced items landing on round numbers."""
        patterns = detect(
            [make_item("o1", "Hood", "97.35"), make_item("o2", "Door", "512.80")],
            [make_item("r1", "Hood", "110"), make_item("r2", "Door", "513.15")],
        )

        pattern = patterns[PatternType.ROUND_NUMBER_BIAS]
        assert pattern.affected_item_ids == ["r1"]
        assert pattern.potential_impact == Decimal("12.65")

    def test_round_number_share_threshold(self, detect, make_item):
        """Test one round price among four changes is not a bias."""
        patterns = detect(
            [
                make_item("o1", "Hood", "97.35"), make_item("o2", "Door", "512.80"),
                make_item("o3", "Grille", "88.10"), make_item("o4", "Fender", "240.15"),
            ],
            [
                make_item("r1", "Hood", "110"), make_item("r2", "Door", "513.15"),
                make_item("r3", "Grille", "90.05"), make_item("r4", "Fender", "244.45"),
            ],
        )
        assert PatternType.ROUND_NUMBER_BIAS not in patterns

    def test_premium_parts_bias(self, detect, make_item):
        """Test an OEM part swapped for aftermarket at the same price."""
        patterns = detect(
            [make_item("o1", "Headlamp assembly", "412.37", category_hint="OEM")],
            [make_item("r1", "Headlamp assembly", "412.37", category_hint="AFTERMARKET")],
        )

        pattern = patterns[PatternType.PREMIUM_PARTS_BIAS]
        assert pattern.affected_item_ids == ["r1"]
        assert pattern.potential_impact == Decimal("412.37")

    def test_cheaper_aftermarket_is_fine(self, detect, make_item):
        """Test a discounted aftermarket swap is not flagged."""
        patterns = detect(
            [make_item("o1", "Headlamp assembly", "412.37", category_hint="OEM")],
            [make_item("r1", "Headlamp assembly", "401.33", category_hint="AFTERMARKET")],
        )
        assert PatternType.PREMIUM_PARTS_BIAS not in patterns

    def test_unnecessary_labor(self, detect, make_item):
        """Test hours above the system cap, priced at the default rate."""
        patterns = detect([], [make_item(
            "r1", "Replace brake rotor", "1000.45", labor_hours=Decimal("6"),
        )])

        pattern = patterns[PatternType.UNNECESSARY_LABOR]
        assert pattern.affected_item_ids == ["r1"]
        assert pattern.potential_impact == Decimal("300.00")
        assert pattern.vehicle_systems == [VehicleSystem.BRAKES]

    def test_shotgun_repair(self, detect, make_item):
        """Test components rarely damaged in a collision."""
        patterns = detect([], [make_item("r1", "Transmission mount", "185.25")])

        pattern = patterns[PatternType.SHOTGUN_REPAIR]
        assert pattern.affected_item_ids == ["r1"]
        assert pattern.potential_impact == Decimal("185.25")

    def test_overpriced_parts(self, detect, make_item):
        """Test unit prices rising by more than half."""
        patterns = detect([make_item("o1", "Hood", "100.01")], [make_item("r1", "Hood", "160.03")])

        pattern = patterns[PatternType.OVERPRICED_PARTS]
        assert pattern.affected_item_ids == ["r1"]
        assert pattern.potential_impact == Decimal("60.02")

    def test_detector_order(self, make_item, context):
        """Test patterns are reported in detector order."""
        reconciliation = ReconciliationMatcher().reconcile(
            [make_item("o1", "Hood", "100.01")],
            [make_item("r1", "Hood", "160.03"), make_item("r2", "Transmission mount", "185.25")],
            context,
        )
        patterns = SuspiciousPatternDetector().detect(reconciliation, context)
        assert [p.pattern_type for p in patterns] == [
            PatternType.SHOTGUN_REPAIR,
            PatternType.OVERPRICED_PARTS,
        ]


# Benford-conforming first digits for 30 values
BENFORD_DIGITS = [1] * 9 + [2] * 5 + [3] * 4 + [4] * 3 + [5] * 2 + [6] * 2 + [7] * 2 + [8] * 2 + [9]


class TestStatisticalDetectors:
    """Tests for the z-score and Benford detectors."""

    def test_outlier_at_two_standard_deviations(self, detect, make_item):
        """Test a price exactly two standard deviations out is flagged."""
        revised = [make_item(f"r{i}", f"Moulding {i}", "100") for i in range(1, 5)]
        revised.append(make_item("r5", "Moulding 5", "500"))

        pattern = detect([], revised)[PatternType.STATISTICAL_OUTLIER]

        assert pattern.affected_item_ids == ["r5"]
        assert pattern.severity == SeverityLevel.MEDIUM
        assert pattern.confidence == 0.6667
        assert pattern.potential_impact == Decimal("320.00")
        assert "price" in pattern.description
        assert "quantity" not in pattern.description

    def test_critical_outlier(self, detect, make_item):
        """Test a z-score of three grades as critical."""
        revised = [make_item(f"r{i}", f"Moulding {i}", "100") for i in range(1, 10)]
        revised.append(make_item("r10", "Moulding 10", "1000"))

        pattern = detect([], revised)[PatternType.STATISTICAL_OUTLIER]

        assert pattern.affected_item_ids == ["r10"]
        assert pattern.severity == SeverityLevel.CRITICAL
        assert pattern.confidence == 1.0
        assert pattern.potential_impact == Decimal("810.00")

    def test_small_sample_has_no_outliers(self, detect, make_item):
        """Test fewer than three items are never scored."""
        patterns = detect([], [make_item("r1", "Hood", "100"), make_item("r2", "Door", "9000")])
        assert PatternType.STATISTICAL_OUTLIER not in patterns

    def test_benford_violation(self, detect, make_item):
        """Test thirty prices that all start with 9."""
        revised = [make_item(f"r{i:02d}", f"Trim clip {i}", str(900 + i)) for i in range(30)]

        pattern = detect([], revised)[PatternType.BENFORD_VIOLATION]

        assert len(pattern.affected_item_ids) == 30
        assert pattern.severity == SeverityLevel.HIGH
        assert "price" in pattern.description
        assert "total" in pattern.description

    def test_benford_conforming_prices(self, detect, make_item):
        """Test first digits that follow Benford's law are not flagged."""
        revised = [
            make_item(f"r{i:02d}", f"Trim clip {i}", str(digit * 100 + i))
            for i, digit in enumerate(BENFORD_DIGITS)
        ]
        assert PatternType.BENFORD_VIOLATION not in detect([], revised)

    def test_benford_needs_thirty_items(self, detect, make_item):
        """Test a skewed but small sample is not tested."""
        revised = [make_item(f"r{i:02d}", f"Trim clip {i}", str(900 + i)) for i in range(29)]
        assert PatternType.BENFORD_VIOLATION not in detect([], revised)

    def test_benford_test_statistic(self):
        """Test the chi-square statistic and deviating digits."""
        chi_square, suspicious = benford_test([9] * 30)

        assert chi_square > Decimal("500")
        assert suspicious == [1, 2, 3, 4, 5, 6, 7, 8, 9]
        assert benford_test(BENFORD_DIGITS)[0] < Decimal("20")

    def test_first_digit(self):
        assert first_digit(Decimal("412.50")) == 4
        assert first_digit(Decimal("0.05")) == 5
        assert first_digit(Decimal("-73")) == 7
        assert first_digit(Decimal("0")) == 0

    @pytest.mark.parametrize("z_score, severity", [
        ("1.9", SeverityLevel.LOW),
        ("2.0", SeverityLevel.MEDIUM),
        ("2.5", SeverityLevel.HIGH),
        ("3.0", SeverityLevel.CRITICAL),
    ])
    def test_z_score_severity(self, z_score, severity):
        assert z_score_severity(Decimal(z_score)) == severity


class TestMaxReasonableLaborHours:
    """Tests for labor caps."""

    def test_caps(self):
        assert max_reasonable_labor_hours(VehicleSystem.ENGINE) == Decimal("20")
        assert max_reasonable_labor_hours(VehicleSystem.PAINT) == Decimal("8")
        assert max_reasonable_labor_hours(None) == Decimal("8")
