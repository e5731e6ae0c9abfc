"""
tests/test_drawdown.py
----------------------
Unit tests for finsim.drawdown.DrawdownDecomposer.

Test coverage:
    Asset attribution (shares sum to 100, ordering, defaults)
    Top contributors, diversification benefit, recovery time
    Sector aggregation and tail concentration
    Historical (cummax) and statistical (Student-t) drawdowns
"""

import unittest

from finsim.drawdown import DrawdownDecomposer
from finsim.enums import ConcentrationLevel
from finsim.errors import InvalidInputError
from finsim.models import Company


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_contributions(weights=(0.6, 0.4), risks=(20, 30), betas=(1.2, 0.8), drawdown=25):
    return DrawdownDecomposer.decompose_drawdown(list(weights), list(risks), list(betas), drawdown)


def _make_companies():
    return [
        Company("AAA", 10.0, 20.0, 1.0, "Technology"),
        Company("BBB", 9.0, 20.0, 1.0, "Technology"),
        Company("CCC", 7.0, 20.0, 1.0, "Energy"),
    ]


# ===========================================================================
# 1. Asset attribution
# ===========================================================================

class TestDecomposeDrawdown(unittest.TestCase):

    def test_two_asset_split(self):
        contributions = _make_contributions()
        self.assertEqual(len(contributions), 2)
        self.assertAlmostEqual(sum(c.percent_of_drawdown for c in contributions), 100.0, places=9)

        first, second = contributions
        self.assertEqual(first.asset_index, 0)
        self.assertEqual(first.percent_of_drawdown, 60.0)
        self.assertEqual(second.percent_of_drawdown, 40.0)
        self.assertEqual(first.weight, 60.0)
        self.assertEqual(first.beta, 1.2)
        self.assertAlmostEqual(first.marginal_contribution, 0.144, places=4)
        self.assertAlmostEqual(first.drawdown_contribution, 3.6, places=2)

    def test_shares_always_close_to_100(self):
        contributions = DrawdownDecomposer.decompose_drawdown(
            [0.3, 0.3, 0.4], [17, 23, 31], [0.9, 1.1, 1.3], 18.5
        )
        self.assertAlmostEqual(sum(c.percent_of_drawdown for c in contributions), 100.0, places=9)

    def test_sorted_by_contribution(self):
        contributions = DrawdownDecomposer.decompose_drawdown(
            [0.2, 0.5, 0.3], [20, 20, 20], None, 20
        )
        self.assertEqual([c.asset_index for c in contributions], [1, 2, 0])

    def test_equal_contributions_keep_input_order(self):
        contributions = DrawdownDecomposer.decompose_drawdown(
            [0.5, 0.5], [20, 20], None, 20, symbols=["X", "Y"]
        )
        self.assertEqual([c.symbol for c in contributions], ["X", "Y"])

    def test_missing_betas_count_as_market(self):
        with_none = DrawdownDecomposer.decompose_drawdown([0.5, 0.5], [20, 30], [None, None], 20)
        with_one = DrawdownDecomposer.decompose_drawdown([0.5, 0.5], [20, 30], [1.0, 1.0], 20)
        self.assertEqual([c.to_dict() for c in with_none], [c.to_dict() for c in with_one])

    def test_negative_drawdown_is_treated_as_magnitude(self):
        positive = _make_contributions(drawdown=25)
        negative = _make_contributions(drawdown=-25)
        self.assertEqual([c.to_dict() for c in positive], [c.to_dict() for c in negative])

    def test_zero_drawdown_gives_zero_shares(self):
        contributions = _make_contributions(drawdown=0)
        self.assertEqual([c.percent_of_drawdown for c in contributions], [0.0, 0.0])

    def test_invalid_inputs_raise(self):
        with self.assertRaises(InvalidInputError):
            _make_contributions(drawdown=100)
        with self.assertRaises(InvalidInputError):
            _make_contributions(drawdown="25")
        with self.assertRaises(InvalidInputError):
            DrawdownDecomposer.decompose_drawdown([0.5, 0.5], [20], None, 20)
        with self.assertRaises(InvalidInputError):
            DrawdownDecomposer.decompose_drawdown([0.5, 0.5], [20, 20], [1.0], 20)


class TestTopContributors(unittest.TestCase):

    def test_threshold_is_strict(self):
        contributions = DrawdownDecomposer.decompose_drawdown(
            [0.8, 0.1, 0.1], [20, 20, 20], None, 20
        )
        top = DrawdownDecomposer.identify_top_contributors(contributions)
        self.assertEqual([c.asset_index for c in top], [0])

    def test_custom_threshold(self):
        top = DrawdownDecomposer.identify_top_contributors(_make_contributions(), threshold=50)
        self.assertEqual(len(top), 1)


# ===========================================================================
# 2. Benefit and recovery
# ===========================================================================

class TestDiversificationBenefit(unittest.TestCase):

    def test_benefit_against_worst_case(self):
        result = DrawdownDecomposer.calculate_drawdown_diversification_benefit(
            [0.6, 0.4], [20, 30], 25
        )
        self.assertEqual(result["worst_case_drawdown"], 45.0)
        self.assertEqual(result["diversification_benefit"], 20.0)
        self.assertEqual(result["benefit_percent"], 44.4)
        self.assertIn("44.4%", result["message"])


class TestRecoveryTime(unittest.TestCase):

    def test_recovery_range(self):
        result = DrawdownDecomposer.estimate_recovery_time(20, 8, 15)
        self.assertTrue(result["recoverable"])
        self.assertEqual(result["recovery_return_needed"], 25.0)
        self.assertEqual(result["optimistic_years"], 2.9)
        self.assertLessEqual(result["optimistic_years"], result["expected_years"])
        self.assertLessEqual(result["expected_years"], result["pessimistic_years"])

    def test_deeper_drawdown_takes_longer(self):
        shallow = DrawdownDecomposer.estimate_recovery_time(10, 8, 15)
        deep = DrawdownDecomposer.estimate_recovery_time(40, 8, 15)
        self.assertGreater(deep["expected_years"], shallow["expected_years"])

    def test_no_drawdown_needs_no_time(self):
        result = DrawdownDecomposer.estimate_recovery_time(0, 8, 15)
        self.assertEqual(result["expected_years"], 0.0)
        self.assertEqual(result["pessimistic_years"], 0.0)

    def test_non_positive_return_never_recovers(self):
        with self.assertLogs("finsim.drawdown", level="WARNING"):
            result = DrawdownDecomposer.estimate_recovery_time(20, 0, 15)
        self.assertFalse(result["recoverable"])
        self.assertIsNone(result["expected_years"])

    def test_negative_volatility_raises(self):
        with self.assertRaises(InvalidInputError):
            DrawdownDecomposer.estimate_recovery_time(20, 8, -1)


# ===========================================================================
# 3. Aggregation
# ===========================================================================

class TestSectorDecomposition(unittest.TestCase):

    def test_sectors_are_summed_and_sorted(self):
        contributions = DrawdownDecomposer.decompose_drawdown(
            [0.4, 0.3, 0.3], [20, 20, 20], None, 20
        )
        sectors = DrawdownDecomposer.decompose_drawdown_by_sector(_make_companies(), contributions)
        self.assertEqual([s["sector"] for s in sectors], ["Technology", "Energy"])
        tech = sectors[0]
        self.assertEqual(tech["asset_count"], 2)
        self.assertEqual(tech["total_weight"], 70.0)
        self.assertEqual(tech["percent_of_drawdown"], 70.0)
        self.assertAlmostEqual(tech["drawdown_contribution"], 2.8, places=2)

    def test_mapping_companies_and_unknown_sector(self):
        companies = [{"symbol": "AAA", "sector": "Utilities"}, {"symbol": "BBB"}]
        contributions = DrawdownDecomposer.decompose_drawdown([0.5, 0.5], [10, 30], None, 20)
        sectors = DrawdownDecomposer.decompose_drawdown_by_sector(companies, contributions)
        self.assertEqual([s["sector"] for s in sectors], ["Unknown", "Utilities"])

    def test_empty_contributions(self):
        self.assertEqual(DrawdownDecomposer.decompose_drawdown_by_sector([], []), [])

    def test_unmatched_asset_index_raises(self):
        contributions = _make_contributions()
        with self.assertRaises(InvalidInputError):
            DrawdownDecomposer.decompose_drawdown_by_sector(_make_companies()[:1], contributions)


class TestTailConcentration(unittest.TestCase):

    def _equal_contributions(self, n):
        return DrawdownDecomposer.decompose_drawdown([1 / n] * n, [20] * n, None, 20)

    def test_two_assets_are_highly_concentrated(self):
        result = DrawdownDecomposer.analyze_tail_risk_concentration(_make_contributions())
        self.assertIs(result["concentration_level"], ConcentrationLevel.HIGH)
        self.assertEqual(result["top3_contribution"], 100.0)

    def test_five_equal_assets_are_medium(self):
        result = DrawdownDecomposer.analyze_tail_risk_concentration(self._equal_contributions(5))
        self.assertIs(result["concentration_level"], ConcentrationLevel.MEDIUM)
        self.assertEqual(result["top3_contribution"], 60.0)
        self.assertEqual(result["top5_contribution"], 100.0)

    def test_ten_equal_assets_are_low(self):
        result = DrawdownDecomposer.analyze_tail_risk_concentration(self._equal_contributions(10))
        self.assertIs(result["concentration_level"], ConcentrationLevel.LOW)
        self.assertIn("low concentration", result["message"])


# ===========================================================================
# 4. Drawdown estimates
# ===========================================================================

class TestHistoricalDrawdown(unittest.TestCase):

    def test_short_series_returns_none(self):
        self.assertIsNone(DrawdownDecomposer.calculate_historical_drawdown([0.01] * 11))
        self.assertIsNone(DrawdownDecomposer.calculate_historical_drawdown(None))

    def test_flat_series_has_no_drawdown(self):
        self.assertEqual(DrawdownDecomposer.calculate_historical_drawdown([0.0] * 12), 0.0)

    def test_peak_to_trough(self):
        returns = [0.1, -0.5] + [0.0] * 10
        self.assertEqual(DrawdownDecomposer.calculate_historical_drawdown(returns), -50.0)

    def test_first_month_loss_is_measured_from_starting_capital(self):
        returns = [-0.2] + [0.0] * 11
        self.assertEqual(DrawdownDecomposer.calculate_historical_drawdown(returns), -20.0)

    def test_floor(self):
        returns = [-0.9, -0.9] + [0.0] * 10
        self.assertEqual(DrawdownDecomposer.calculate_historical_drawdown(returns), -85.0)


class TestStatisticalDrawdown(unittest.TestCase):

    def test_one_year_tails(self):
        result = DrawdownDecomposer.calculate_statistical_drawdown(15, 1, 8)
        self.assertAlmostEqual(result["percentile_95"], -22.225, delta=0.01)
        self.assertAlmostEqual(result["percentile_99"], -42.475, delta=0.01)
        self.assertLess(result["percentile_99"], result["percentile_95"])
        self.assertEqual(result["confidence"], "95%")

    def test_low_volatility_is_clamped_to_minimum_drawdown(self):
        result = DrawdownDecomposer.calculate_statistical_drawdown(1, 1, 10)
        self.assertEqual(result["percentile_95"], -8.0)
        self.assertEqual(result["percentile_99"], -10.0)

    def test_extreme_volatility_is_floored(self):
        result = DrawdownDecomposer.calculate_statistical_drawdown(80, 4, 0)
        self.assertEqual(result["percentile_95"], -85.0)
        self.assertEqual(result["percentile_99"], -85.0)

    def test_negative_volatility_raises(self):
        with self.assertRaises(InvalidInputError):
            DrawdownDecomposer.calculate_statistical_drawdown(-1, 1, 8)


if __name__ == "__main__":
    unittest.main()
