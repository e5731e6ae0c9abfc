"""
tests/test_goal_metrics.py
--------------------------
Unit tests for finsim.goal_metrics.GoalMetricsCalculator.

Test coverage:
    Progress with and without holdings (initial capital is never dropped)
    Which holdings fund a goal (assigned, linked, all)
    Months remaining and the monthly amount needed to close the gap
    Invalid goals and holdings raise instead of reporting zero progress
    Future value, stress test and projection scenarios
"""

import unittest
from datetime import date, datetime

from finsim.errors import InvalidGoalError, InvalidInputError
from finsim.goal_metrics import GoalMetricsCalculator
from finsim.models import Goal, Holding


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_goal(target=100_000, initial=50_000, target_date=None):
    return Goal(target_amount=target, current_allocation=initial, target_date=target_date)


def _make_holding(symbol="AAA", quantity=10, average_cost=100.0, current_price=None):
    return Holding(symbol, quantity, average_cost, current_price)


REFERENCE = date(2026, 1, 1)


# ===========================================================================
# 1. Progress
# ===========================================================================

class TestGoalProgress(unittest.TestCase):

    def test_initial_capital_only_is_half_way(self):
        metrics = GoalMetricsCalculator.compute_goal_metrics(
            {"target_amount": 100_000, "current_allocation": 50_000}, []
        )
        self.assertEqual(metrics.progress_percent, 50.0)
        self.assertEqual(metrics.portfolio_value, 50_000)
        self.assertEqual(metrics.remaining_gap, 50_000)

    def test_no_holdings_portfolio_value_equals_initial_capital(self):
        for initial in (0, 1, 12_345, 99_999, 250_000):
            metrics = GoalMetricsCalculator.compute_goal_metrics(_make_goal(initial=initial))
            self.assertEqual(metrics.portfolio_value, initial)
            self.assertEqual(metrics.breakdown["total"], initial)

    def test_holdings_add_to_initial_capital(self):
        holdings = [_make_holding(quantity=10, average_cost=100.0, current_price=150.0)]
        metrics = GoalMetricsCalculator.compute_goal_metrics(_make_goal(), holdings)
        self.assertEqual(metrics.holdings_value, 1_500)
        self.assertEqual(metrics.portfolio_value, 51_500)
        self.assertEqual(metrics.progress_percent, 51.5)
        self.assertEqual(
            metrics.breakdown,
            {"contributed": 50_000, "from_holdings": 1_500, "total": 51_500},
        )

    def test_price_falls_back_to_average_cost(self):
        holdings = [{"symbol": "AAA", "quantity": 4, "average_cost": 250.0}]
        metrics = GoalMetricsCalculator.compute_goal_metrics(_make_goal(initial=0), holdings)
        self.assertEqual(metrics.holdings_value, 1_000)
        self.assertEqual(metrics.progress_percent, 1.0)

    def test_zero_current_price_falls_back_to_average_cost(self):
        holdings = [{"symbol": "AAA", "quantity": 4, "average_cost": 250.0, "current_price": 0}]
        self.assertEqual(GoalMetricsCalculator.holdings_value(holdings), 1_000.0)

    def test_progress_above_target_is_not_clamped(self):
        metrics = GoalMetricsCalculator.compute_goal_metrics(_make_goal(initial=150_000))
        self.assertEqual(metrics.progress_percent, 150.0)
        self.assertEqual(metrics.remaining_gap, 0)

    def test_missing_allocation_counts_as_zero(self):
        metrics = GoalMetricsCalculator.compute_goal_metrics({"target_amount": 1_000})
        self.assertEqual(metrics.initial_capital, 0)
        self.assertEqual(metrics.progress_percent, 0.0)

    def test_progress_is_monotonic_in_holdings(self):
        previous = -1.0
        for quantity in range(0, 200, 20):
            holdings = [_make_holding(quantity=quantity, average_cost=50.0)]
            progress = GoalMetricsCalculator.compute_goal_metrics(
                _make_goal(initial=10_000), holdings
            ).progress_percent
            self.assertGreaterEqual(progress, previous)
            previous = progress

    def test_to_dict_round_trip_keys(self):
        out = GoalMetricsCalculator.compute_goal_metrics(_make_goal()).to_dict()
        for key in ("initial_capital", "portfolio_value", "progress_percent",
                    "remaining_gap", "months_remaining", "required_monthly_to_close_gap"):
            self.assertIn(key, out)



class TestHoldingSelection(unittest.TestCase):

    HOLDINGS = [
        _make_holding("AAA", quantity=10, average_cost=100.0),
        _make_holding("BBB", quantity=3, average_cost=200.0),
    ]

    def _holdings_value(self, **goal_fields):
        goal = Goal(target_amount=100_000, current_allocation=50_000, **goal_fields)
        return GoalMetricsCalculator.compute_goal_metrics(goal, self.HOLDINGS).holdings_value

    def test_assigned_holdings_only(self):
        self.assertEqual(self._holdings_value(assigned_holdings=["BBB"]), 600)

    def test_single_symbol_string_is_accepted(self):
        self.assertEqual(self._holdings_value(assigned_holdings="BBB"), 600)

    def test_linked_goal_counts_everything_when_nothing_matches(self):
        self.assertEqual(self._holdings_value(assigned_holdings=["ZZZ"], is_linked=True), 1_600)

    def test_unassigned_goal_counts_everything(self):
        self.assertEqual(self._holdings_value(), 1_600)
        self.assertEqual(self._holdings_value(assigned_holdings=[]), 1_600)

    def test_unmatched_assignments_count_nothing(self):
        goal = Goal(target_amount=100_000, current_allocation=50_000, assigned_holdings=["ZZZ"])
        metrics = GoalMetricsCalculator.compute_goal_metrics(goal, self.HOLDINGS)
        self.assertEqual(metrics.holdings_value, 0)
        self.assertEqual(metrics.progress_percent, 50.0)

    def test_mapping_goal_and_holdings(self):
        selected = GoalMetricsCalculator.select_holdings(
            {"target_amount": 1_000, "assigned_holdings": ["AAA"]},
            [{"symbol": "AAA", "quantity": 1, "average_cost": 1.0},
             {"symbol": "BBB", "quantity": 1, "average_cost": 1.0}],
        )
        self.assertEqual([h["symbol"] for h in selected], ["AAA"])

# ===========================================================================
# 2. Target date
# ===========================================================================

class TestGoalTimeline(unittest.TestCase):

    def test_no_target_date_means_gap_is_due_now(self):
        metrics = GoalMetricsCalculator.compute_goal_metrics(_make_goal())
        self.assertEqual(metrics.months_remaining, 0.0)
        self.assertEqual(metrics.required_monthly_to_close_gap, 50_000)
        self.assertIsNone(metrics.target_date)

    def test_one_year_out(self):
        metrics = GoalMetricsCalculator.compute_goal_metrics(
            _make_goal(target_date="2027-01-01"), reference_date=REFERENCE
        )
        self.assertEqual(metrics.months_remaining, 11.99)
        self.assertEqual(metrics.target_date, "2027-01-01")
        self.assertAlmostEqual(metrics.required_monthly_to_close_gap, 50_000 / (365 / 30.4375), delta=1)

    def test_datetime_target_is_accepted(self):
        metrics = GoalMetricsCalculator.compute_goal_metrics(
            _make_goal(target_date=datetime(2026, 7, 1, 12, 0)), reference_date=REFERENCE
        )
        self.assertGreater(metrics.months_remaining, 5.0)

    def test_past_target_date_logs_and_reports_zero_months(self):
        with self.assertLogs("finsim.goal_metrics", level="WARNING"):
            metrics = GoalMetricsCalculator.compute_goal_metrics(
                _make_goal(target_date=date(2025, 1, 1)), reference_date=REFERENCE
            )
        self.assertEqual(metrics.months_remaining, 0.0)
        self.assertEqual(metrics.required_monthly_to_close_gap, metrics.remaining_gap)

    def test_malformed_target_date_raises(self):
        with self.assertRaises(InvalidGoalError):
            GoalMetricsCalculator.compute_goal_metrics(_make_goal(target_date="next spring"))

    def test_non_date_target_date_raises(self):
        with self.assertRaises(InvalidGoalError):
            GoalMetricsCalculator.compute_goal_metrics(_make_goal(target_date=2027))


# ===========================================================================
# 3. Invalid input
# ===========================================================================

class TestInvalidGoals(unittest.TestCase):

    def test_missing_goal_raises(self):
        with self.assertRaises(InvalidGoalError):
            GoalMetricsCalculator.compute_goal_metrics(None)

    def test_bad_targets_raise(self):
        for target in (0, -5, None, "100000", float("nan")):
            with self.subTest(target=target):
                with self.assertRaises(InvalidGoalError):
                    GoalMetricsCalculator.compute_goal_metrics(_make_goal(target=target))

    def test_missing_target_key_raises(self):
        with self.assertRaises(InvalidGoalError):
            GoalMetricsCalculator.compute_goal_metrics({"current_allocation": 10})

    def test_non_numeric_allocation_raises(self):
        with self.assertRaises(InvalidGoalError):
            GoalMetricsCalculator.compute_goal_metrics(_make_goal(initial="lots"))

    def test_negative_allocation_raises(self):
        with self.assertRaises(InvalidGoalError):
            GoalMetricsCalculator.compute_goal_metrics(_make_goal(initial=-1))

    def test_invalid_goal_error_is_an_input_error(self):
        with self.assertRaises(InvalidInputError):
            GoalMetricsCalculator.compute_goal_metrics(_make_goal(target=0))

    def test_negative_quantity_raises(self):
        with self.assertRaises(InvalidInputError):
            GoalMetricsCalculator.compute_goal_metrics(
                _make_goal(), [_make_holding(quantity=-3)]
            )

    def test_non_numeric_price_raises(self):
        with self.assertRaises(InvalidInputError):
            GoalMetricsCalculator.holdings_value([_make_holding(average_cost="n/a")])

    def test_holding_missing_average_cost_raises(self):
        with self.assertRaises(InvalidInputError):
            GoalMetricsCalculator.holdings_value([{"symbol": "AAA", "quantity": 1}])
        with self.assertRaises(InvalidInputError):
            Holding.from_dict({"symbol": "AAA", "quantity": 1})


# ===========================================================================
# 4. Deterministic scenarios
# ===========================================================================

class TestFutureValue(unittest.TestCase):

    def test_zero_rate_is_plain_sum(self):
        self.assertEqual(GoalMetricsCalculator.future_value(1_000, 100, 0.0, 12), 2_200)

    def test_lump_sum_compounds_monthly(self):
        fv = GoalMetricsCalculator.future_value(1_000, 0, 0.12, 12)
        self.assertAlmostEqual(fv, 1_000 * 1.01 ** 12, places=6)

    def test_contributions_increase_value(self):
        base = GoalMetricsCalculator.future_value(1_000, 0, 0.08, 24)
        more = GoalMetricsCalculator.future_value(1_000, 100, 0.08, 24)
        self.assertGreater(more, base + 2_400)


class TestStressTest(unittest.TestCase):

    def test_growth_is_separated_from_contributions(self):
        result = GoalMetricsCalculator.calculate_stress_test_metrics(
            _make_goal(initial=10_000), monthly_contribution=500, months=18
        )
        self.assertEqual(result["months_analyzed"], 18)
        self.assertEqual(result["annual_return_assumption"], 8.0)
        self.assertEqual(result["total_contributions"], 19_000)
        self.assertGreater(result["portfolio_value_with_growth"], 19_000)
        self.assertAlmostEqual(
            result["estimated_market_growth"],
            result["portfolio_value_with_growth"] - result["total_contributions"],
            delta=1,
        )
        self.assertGreater(result["growth_percent"], 0.0)

    def test_zero_return_has_no_growth(self):
        result = GoalMetricsCalculator.calculate_stress_test_metrics(
            _make_goal(initial=10_000), 500, 12, annual_return_rate=0.0
        )
        self.assertEqual(result["estimated_market_growth"], 0)
        self.assertEqual(result["growth_percent"], 0.0)

    def test_negative_months_raise(self):
        with self.assertRaises(InvalidInputError):
            GoalMetricsCalculator.calculate_stress_test_metrics(_make_goal(), months=-1)


class TestProjections(unittest.TestCase):

    def test_three_scenarios_are_ordered(self):
        result = GoalMetricsCalculator.calculate_projections(10_000, 1_000, 100_000)
        self.assertEqual(set(result), {"pessimistic", "expected", "optimistic"})
        self.assertEqual(result["expected"]["annual_return"], 8.0)
        self.assertEqual(result["pessimistic"]["annual_return"], -7.0)
        self.assertEqual(result["optimistic"]["annual_return"], 23.0)
        self.assertLessEqual(
            result["optimistic"]["months_to_goal"], result["expected"]["months_to_goal"]
        )
        self.assertLessEqual(
            result["expected"]["months_to_goal"], result["pessimistic"]["months_to_goal"]
        )

    def test_non_positive_rate_uses_arithmetic_months(self):
        result = GoalMetricsCalculator.calculate_projections(10_000, 1_000, 100_000)
        self.assertEqual(result["pessimistic"]["months_to_goal"], 90)

    def test_expected_scenario_reaches_target(self):
        expected = GoalMetricsCalculator.calculate_projections(10_000, 1_000, 100_000)["expected"]
        self.assertTrue(expected["achieves_goal"])
        self.assertAlmostEqual(expected["projected_value"], 100_000, delta=100)
        self.assertAlmostEqual(
            expected["growth_from_returns"],
            expected["projected_value"] - expected["total_contributions"],
            delta=1,
        )

    def test_unreachable_without_contributions(self):
        pessimistic = GoalMetricsCalculator.calculate_projections(10_000, 0, 100_000)["pessimistic"]
        self.assertIsNone(pessimistic["months_to_goal"])
        self.assertIsNone(pessimistic["projected_value"])
        self.assertFalse(pessimistic["achieves_goal"])

    def test_rates_are_bounded(self):
        high = GoalMetricsCalculator.calculate_projections(10_000, 100, 50_000, 0.35, 0.15)
        self.assertEqual(high["optimistic"]["annual_return"], 40.0)
        low = GoalMetricsCalculator.calculate_projections(10_000, 100, 50_000, 0.0, 0.8)
        self.assertEqual(low["pessimistic"]["annual_return"], -50.0)

    def test_already_funded_goal_needs_no_months(self):
        result = GoalMetricsCalculator.calculate_projections(200_000, 0, 100_000)
        self.assertEqual(result["pessimistic"]["months_to_goal"], 0)

    def test_non_positive_target_raises(self):
        with self.assertRaises(InvalidGoalError):
            GoalMetricsCalculator.calculate_projections(10_000, 1_000, 0)


if __name__ == "__main__":
    unittest.main()
