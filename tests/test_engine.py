"""
tests/test_engine.py
--------------------
Integration tests for finsim.engine.FinancialEngine and SessionContext.

Test coverage:
    analyze_goal:       metrics, guardrails, session-consistent progress
    analyze_portfolio:  repair, statistics, drawdown attribution, snapshots
    run_simulations:    the Monte Carlo family on repaired weights
    SessionContext:     bounded snapshot history and reset
"""

import unittest

from finsim.engine import FinancialEngine
from finsim.enums import RiskLevel
from finsim.errors import InvalidGoalError, InvalidInputError
from finsim.models import Snapshot
from finsim.random_source import NormalSampler
from finsim.session_context import SessionContext
from finsim.simulator import StochasticSimulator


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_engine(seed=42):
    return FinancialEngine(simulator=StochasticSimulator(NormalSampler.seeded(seed)))


def _make_companies():
    return [
        {"symbol": "AAA", "expected_return": 12.0, "risk": 25.0, "beta": 1.2, "sector": "Technology"},
        {"symbol": "BBB", "expected_return": 9.0, "risk": 18.0, "beta": 1.0, "sector": "Technology"},
        {"symbol": "CCC", "expected_return": 6.0, "risk": 12.0, "beta": 0.7, "sector": "Utilities"},
    ]


WEIGHTS = [0.4, 0.35, 0.25]


# ===========================================================================
# 1. Goals
# ===========================================================================

class TestAnalyzeGoal(unittest.TestCase):

    def test_half_funded_goal(self):
        result = _make_engine().analyze_goal(
            {"target_amount": 100_000, "current_allocation": 50_000}
        )
        self.assertEqual(result["metrics"].progress_percent, 50.0)
        self.assertEqual(result["progress"]["adjusted"], 50.0)
        self.assertTrue(result["can_render"])
        self.assertEqual(result["status"]["type"], "success")

    def test_progress_is_consistent_within_a_session(self):
        engine = _make_engine()
        goal = {"target_amount": 100_000, "current_allocation": 50_000}
        engine.analyze_goal(goal, goal_id="house")
        later = engine.analyze_goal(
            goal, holdings=[{"symbol": "AAA", "quantity": 10, "average_cost": 100.0}], goal_id="house"
        )
        self.assertEqual(later["metrics"].progress_percent, 51.0)
        self.assertTrue(later["progress"]["was_adjusted"])
        self.assertEqual(later["progress"]["adjusted"], 50.0)

    def test_distinct_goals_keep_their_own_progress(self):
        engine = _make_engine()
        engine.analyze_goal({"target_amount": 100_000, "current_allocation": 50_000})
        other = engine.analyze_goal({"target_amount": 200_000, "current_allocation": 40_000})
        self.assertEqual(other["metrics"].progress_percent, 20.0)
        self.assertFalse(other["progress"]["was_adjusted"])
        self.assertEqual(other["progress"]["adjusted"], 20.0)

    def test_same_goal_without_id_is_still_consistent(self):
        engine = _make_engine()
        goal = {"target_amount": 100_000, "current_allocation": 50_000}
        engine.analyze_goal(goal)
        later = engine.analyze_goal(
            goal, holdings=[{"symbol": "AAA", "quantity": 10, "average_cost": 100.0}]
        )
        self.assertTrue(later["progress"]["was_adjusted"])
        self.assertEqual(later["progress"]["adjusted"], 50.0)

    def test_recommendation_warnings_do_not_block(self):
        result = _make_engine().analyze_goal(
            {"target_amount": 100_000, "current_allocation": 50_000}, recommendation={}
        )
        self.assertTrue(result["can_render"])
        self.assertIn("MISSING_MONTHLY", result["validation"].codes())

    def test_invalid_goal_raises(self):
        with self.assertRaises(InvalidGoalError):
            _make_engine().analyze_goal({"target_amount": 0})


# ===========================================================================
# 2. Portfolio
# ===========================================================================

class TestAnalyzePortfolio(unittest.TestCase):

    def test_portfolio_pass(self):
        engine = _make_engine()
        result = engine.analyze_portfolio(_make_companies(), WEIGHTS)

        self.assertAlmostEqual(sum(result["weights"]), 1.0, places=9)
        self.assertTrue(result["allocation"].is_valid)
        self.assertAlmostEqual(result["portfolio_return"], 9.45, places=4)
        self.assertGreater(result["portfolio_risk"], 0.0)
        self.assertIsInstance(result["risk_level"], RiskLevel)
        self.assertIsNone(result["drift"])
        self.assertTrue(result["consistency"]["consistent"])
        self.assertIs(engine.context.latest_snapshot, result["snapshot"])

        drawdown = result["drawdown"]
        shares = [c.percent_of_drawdown for c in drawdown["contributions"]]
        self.assertAlmostEqual(sum(shares), 100.0, places=9)
        self.assertEqual(drawdown["contributions"][0].symbol, "AAA")
        self.assertEqual([s["sector"] for s in drawdown["by_sector"]], ["Technology", "Utilities"])
        self.assertTrue(drawdown["recovery"]["recoverable"])

    def test_overweight_vector_is_repaired(self):
        result = _make_engine().analyze_portfolio(_make_companies(), [0.5, 0.3, 0.3])
        self.assertFalse(result["allocation"].is_valid)
        self.assertEqual(result["changes"][0]["reason"], "max_position_exceeded")
        self.assertAlmostEqual(sum(result["weights"]), 1.0, places=9)

    def test_explicit_drawdown_is_attributed(self):
        result = _make_engine().analyze_portfolio(
            _make_companies(), WEIGHTS, portfolio_drawdown=-30
        )
        self.assertEqual(result["drawdown"]["portfolio_drawdown"], 30.0)

    def test_repeat_pass_is_reproducible(self):
        engine = _make_engine()
        first = engine.analyze_portfolio(_make_companies(), WEIGHTS)
        second = engine.analyze_portfolio(_make_companies(), WEIGHTS)
        self.assertEqual(first["snapshot"].hash, second["snapshot"].hash)
        self.assertFalse(second["drift"]["has_drift"])
        self.assertEqual(first["portfolio_risk"], second["portfolio_risk"])
        self.assertEqual(len(engine.context.snapshots), 2)

    def test_changed_weights_are_reported_as_drift(self):
        engine = _make_engine()
        engine.analyze_portfolio(_make_companies(), WEIGHTS)
        second = engine.analyze_portfolio(_make_companies(), [0.3, 0.35, 0.35])
        self.assertTrue(second["drift"]["has_drift"])
        self.assertTrue(second["drift"]["hash_changed"])
        self.assertFalse(second["registry"]["portfolio_return"]["was_adjusted"])

    def test_company_risk_is_fixed_for_the_session(self):
        engine = _make_engine()
        first = engine.analyze_portfolio(_make_companies(), WEIGHTS)
        self.assertFalse(first["registry"]["risk_AAA"]["was_adjusted"])

        changed = _make_companies()
        changed[0]["risk"] = 30.0
        second = engine.analyze_portfolio(changed, WEIGHTS)

        entry = second["registry"]["risk_AAA"]
        self.assertTrue(entry["was_adjusted"])
        self.assertEqual(entry["original"], 30.0)
        self.assertEqual(entry["adjusted"], 25.0)
        self.assertFalse(second["registry"]["risk_BBB"]["was_adjusted"])
        self.assertEqual(second["portfolio_risk"], first["portfolio_risk"])
        self.assertEqual(second["snapshot"].hash, first["snapshot"].hash)

    def test_explicit_correlation_matrix(self):
        corr = [[1.0, 0.5, 0.2], [0.5, 1.0, 0.3], [0.2, 0.3, 1.0]]
        result = _make_engine().analyze_portfolio(_make_companies(), WEIGHTS, correlation_matrix=corr)
        self.assertEqual(result["snapshot"].rounded_inputs["correlations"], corr)

    def test_mismatched_inputs_raise(self):
        engine = _make_engine()
        with self.assertRaises(InvalidInputError):
            engine.analyze_portfolio(_make_companies(), [0.5, 0.5])
        with self.assertRaises(InvalidInputError):
            engine.analyze_portfolio([], [])
        with self.assertRaises(InvalidInputError):
            engine.analyze_portfolio(_make_companies(), WEIGHTS, correlation_matrix=[[1.0]])
        with self.assertRaises(InvalidInputError):
            engine.analyze_portfolio([{"risk": 10.0}], [1.0])


# ===========================================================================
# 3. Simulations
# ===========================================================================

class TestRunSimulations(unittest.TestCase):

    def test_simulation_family(self):
        result = _make_engine().run_simulations(
            _make_companies(), WEIGHTS, years=2, principal=10_000,
            monthly_amount=250, simulations=100,
        )
        self.assertAlmostEqual(result["portfolio_return"], 9.45, places=4)
        self.assertEqual(result["drift"][0]["month"], 0)
        self.assertEqual(result["rebalancing"]["metadata"]["simulations"], 100)
        self.assertIn(result["optimal_threshold"]["optimal_threshold"], (5, 10, 15, 20, 25))
        self.assertIn("opportunity_cost", result["panic_selling"])
        self.assertEqual(result["dca_vs_lump_sum"]["total_invested"], 16_000.0)

    def test_dca_needs_a_principal(self):
        result = _make_engine().run_simulations(
            _make_companies(), WEIGHTS, years=1, simulations=20
        )
        self.assertIsNone(result["dca_vs_lump_sum"])


# ===========================================================================
# 4. Session context
# ===========================================================================

class TestSessionContext(unittest.TestCase):

    def test_registry_shares_the_session_id(self):
        context = SessionContext(session_id="abc")
        self.assertEqual(context.registry.session_id, "abc")
        self.assertIsNone(context.latest_snapshot)

    def test_separate_sessions_do_not_share_metrics(self):
        goal = {"target_amount": 100_000, "current_allocation": 50_000}
        a = FinancialEngine(SessionContext())
        b = FinancialEngine(SessionContext())
        a.analyze_goal(goal, goal_id="g")
        result = b.analyze_goal({"target_amount": 100_000, "current_allocation": 80_000}, goal_id="g")
        self.assertFalse(result["progress"]["was_adjusted"])

    def test_snapshot_history_is_capped(self):
        context = SessionContext(snapshot_history=3)
        for i in range(5):
            context.record_snapshot(Snapshot(context.session_id, "t", {}, hash=str(i)))
        self.assertEqual([s.hash for s in context.snapshots], ["2", "3", "4"])
        self.assertEqual(context.latest_snapshot.hash, "4")

    def test_reset(self):
        engine = _make_engine()
        engine.analyze_portfolio(_make_companies(), WEIGHTS)
        session_id = engine.context.session_id
        engine.context.reset()
        self.assertEqual(len(engine.context.snapshots), 0)
        self.assertEqual(len(engine.context.registry), 0)
        self.assertEqual(engine.context.session_id, session_id)


if __name__ == "__main__":
    unittest.main()
