"""Price deviation risk."""
import math

import pytest

from backend.core.risk import RiskAssessor, blend_reference, relative_deviation


class TestBlendReference:

    def test_weights_live_over_historical(self):
        assert blend_reference(100.0, 80.0) == pytest.approx(94.0)

    def test_single_reference(self):
        assert blend_reference(None, 80.0) == 80.0
        assert blend_reference(100.0, None) == 100.0

    def test_no_reference(self):
        assert blend_reference(None, None) is None
        assert blend_reference(math.nan, None) is None


class TestRiskAssessor:

    def test_large_deviation_is_manipulation(self):
        ra = RiskAssessor().assess_price_deviation(120.0, 90.0, 100.0, 90.0, 80.0, 90.0)
        assert ra.deviation_buy == pytest.approx(26 / 94)
        assert ra.risk_score == 1.0
        assert ra.manipulated_likely is True
        assert "buy" in ra.note

    def test_no_references_means_no_risk(self):
        ra = RiskAssessor().assess_price_deviation(120.0, 100.0)
        assert ra.risk_score == 0.0
        assert ra.manipulated_likely is False

    def test_small_deviation(self):
        ra = RiskAssessor().assess_price_deviation(105.0, 100.0, 100.0, 100.0)
        assert ra.risk_score == pytest.approx(0.25)
        assert ra.manipulated_likely is False

    def test_threshold_is_inclusive(self):
        ra = RiskAssessor().assess_price_deviation(112.0, 100.0, 100.0, 100.0)
        assert ra.manipulated_likely is True

    @pytest.mark.parametrize("reference", [0.0, -5.0, math.inf, None])
    def test_unusable_reference_gives_zero_deviation(self, reference):
        assert relative_deviation(150.0, reference) == 0.0
