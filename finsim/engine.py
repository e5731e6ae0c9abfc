"""
finsim/engine.py
----------------
Facade wiring the engine's components in their data-flow order:

    weights → AllocationValidator (validate, repair)
            → portfolio return / risk → MetricRegistry
            → DrawdownDecomposer / StochasticSimulator
    goal + holdings → GoalMetricsCalculator → ValidationGuardrails
    every portfolio pass → ConsistencyRegistry snapshot

``InvalidInputError`` from any component propagates to the caller.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Mapping, Optional, Sequence

from finsim.allocation_validator import AllocationValidator
from finsim.config import DEFAULT_ASSET_RISK, MAX_POSITION, MIN_POSITION, RISK_FREE_RATE
from finsim.consistency import ConsistencyRegistry, MetricRegistry, fingerprint
from finsim.drawdown import DrawdownDecomposer
from finsim.errors import InvalidInputError
from finsim.financial_math import (
    as_float,
    estimate_correlation_matrix,
    portfolio_expected_return,
    portfolio_risk,
    require_same_length,
    round_to,
    sharpe_ratio,
    validate_correlation_matrix,
)
from finsim.goal_metrics import GoalMetricsCalculator
from finsim.guardrails import ValidationGuardrails
from finsim.models import Company
from finsim.session_context import SessionContext
from finsim.simulator import StochasticSimulator

LOGGER = logging.getLogger(__name__)


class FinancialEngine:
    """
    One engine per analysis session.

    Usage::

        engine = FinancialEngine()
        goal = engine.analyze_goal({"target_amount": 100_000,
                                    "current_allocation": 50_000})
        goal["metrics"].progress_percent       # 50.0

        portfolio = engine.analyze_portfolio(companies, [0.4, 0.35, 0.25])
        portfolio["portfolio_risk"]
    """

    def __init__(
        self,
        context: Optional[SessionContext] = None,
        simulator: Optional[StochasticSimulator] = None,
    ):
        self.context = context if context is not None else SessionContext()
        self._simulator = simulator if simulator is not None else StochasticSimulator()

    # ------------------------------------------------------------------ #
    #  Goals
    # ------------------------------------------------------------------ #

    def analyze_goal(
        self,
        goal,
        holdings: Optional[Sequence] = None,
        recommendation: Optional[Mapping] = None,
        goal_id: Optional[str] = None,
        reference_date: Optional[date] = None,
    ) -> dict:
        """
        Goal metrics, guardrail report and the session-consistent progress.

        Progress is registered under *goal_id*; without one, under a
        fingerprint of the goal's target, initial capital and target date,
        so distinct goals never share a registry entry.

        Raises ``InvalidGoalError`` for a malformed goal; it is never
        turned into a zero-progress result.
        """
        metrics = GoalMetricsCalculator.compute_goal_metrics(goal, holdings, reference_date)
        render = ValidationGuardrails.can_render_goal_analysis(goal, metrics, recommendation)
        progress = self.context.registry.enforce_consistency(
            "goal_progress", metrics.progress_percent,
            symbol=goal_id if goal_id is not None else self._goal_key(metrics),
            source="goal_metrics",
        )
        return {
            "metrics":    metrics,
            "progress":   progress,
            "can_render": render["can_render"],
            "validation": render["validation"],
            "status":     ValidationGuardrails.format_validation_error(render["validation"]),
        }

    # ------------------------------------------------------------------ #
    #  Portfolio
    # ------------------------------------------------------------------ #

    def analyze_portfolio(
        self,
        companies: Sequence,
        weights: Sequence[float],
        correlation_matrix=None,
        portfolio_drawdown: Optional[float] = None,
        max_position: float = MAX_POSITION,
        min_position: float = MIN_POSITION,
        risk_free_rate: float = RISK_FREE_RATE,
    ) -> dict:
        """
        Validate and repair *weights*, compute portfolio statistics,
        attribute drawdown and snapshot the pass.

        When *portfolio_drawdown* is omitted the one-year 95th-percentile
        statistical drawdown of the portfolio is used.

        Each company's risk goes through the session registry before any
        portfolio figure is computed; ``result["registry"]`` carries those
        results under ``"risk_<symbol>"`` next to the portfolio metrics.
        """
        parsed = self._parse_companies(companies)
        require_same_length(parsed, weights, "weights")

        validation = AllocationValidator.validate_allocation(
            weights, max_position=max_position, min_position=min_position
        )
        repaired = AllocationValidator.enforce_constraints(
            weights, max_position=max_position, min_position=min_position
        )
        w = repaired["adjusted"]

        returns, raw_risks, betas = self._asset_vectors(parsed)
        registry = self.context.registry

        # per-asset risk is fixed at its first value this session
        asset_risk = {
            MetricRegistry.key_for("risk", c.symbol): registry.enforce_consistency(
                "risk", risk, symbol=c.symbol, source="company"
            )
            for c, risk in zip(parsed, raw_risks)
        }
        risks = [
            asset_risk[MetricRegistry.key_for("risk", c.symbol)]["adjusted"] for c in parsed
        ]

        corr = self._correlation(parsed, correlation_matrix)
        port_return = portfolio_expected_return(w, returns)
        port_risk = portfolio_risk(w, risks, corr)
        port_sharpe = sharpe_ratio(port_return, port_risk, risk_free_rate)

        previous = self.context.latest_snapshot
        snapshot = ConsistencyRegistry.create_session_snapshot(
            {
                "weights":        w,
                "returns":        returns,
                "risks":          risks,
                "correlations":   corr,
                "risk_free_rate": risk_free_rate,
            },
            session_id=self.context.session_id,
        )
        self.context.record_snapshot(snapshot)
        drift = (
            ConsistencyRegistry.detect_drift(previous, {"weights": w})
            if previous is not None else None
        )

        # portfolio-level metrics are keyed by input fingerprint: same inputs, same figures
        key = snapshot.hash[:16]
        consistent = {
            "portfolio_return": registry.enforce_consistency("return", round_to(port_return, 4), key),
            "portfolio_risk":   registry.enforce_consistency("risk", round_to(port_risk, 4), key),
            "sharpe_ratio":     registry.enforce_consistency("sharpe", round_to(port_sharpe, 4), key),
        }
        consistent.update(asset_risk)

        if portfolio_drawdown is None:
            tail = DrawdownDecomposer.calculate_statistical_drawdown(port_risk, 1, port_return)
            portfolio_drawdown = abs(tail["percentile_95"])

        contributions = DrawdownDecomposer.decompose_drawdown(
            w, risks, betas, portfolio_drawdown, symbols=[c.symbol for c in parsed]
        )

        LOGGER.debug(
            "portfolio analysed: session=%s assets=%s return=%.4f risk=%.4f",
            self.context.session_id, len(w), port_return, port_risk,
        )
        return {
            "weights":          w,
            "allocation":       validation,
            "changes":          repaired["changes"],
            "portfolio_return": consistent["portfolio_return"]["adjusted"],
            "portfolio_risk":   consistent["portfolio_risk"]["adjusted"],
            "sharpe_ratio":     consistent["sharpe_ratio"]["adjusted"],
            "registry":         consistent,
            "risk_level":       ConsistencyRegistry.classify_risk_level(port_risk),
            "drawdown": {
                "portfolio_drawdown": round_to(as_float(abs(portfolio_drawdown), "portfolio_drawdown"), 2),
                "contributions":      contributions,
                "top_contributors":   DrawdownDecomposer.identify_top_contributors(contributions),
                "by_sector":          DrawdownDecomposer.decompose_drawdown_by_sector(parsed, contributions),
                "tail_concentration": DrawdownDecomposer.analyze_tail_risk_concentration(contributions),
                "diversification":    DrawdownDecomposer.calculate_drawdown_diversification_benefit(
                    w, risks, portfolio_drawdown
                ),
                "recovery":           DrawdownDecomposer.estimate_recovery_time(
                    portfolio_drawdown, port_return, port_risk
                ),
            },
            "consistency":      ConsistencyRegistry.verify_consistency(
                {"portfolio_return": port_return, "portfolio_risk": port_risk}, snapshot
            ),
            "drift":            drift,
            "snapshot":         snapshot,
        }

    # ------------------------------------------------------------------ #
    #  Simulations
    # ------------------------------------------------------------------ #

    def run_simulations(
        self,
        companies: Sequence,
        weights: Sequence[float],
        years: int = 10,
        principal: Optional[float] = None,
        monthly_amount: float = 0.0,
        correlation_matrix=None,
        simulations: Optional[int] = None,
    ) -> dict:
        """
        Run the Monte Carlo family against the repaired weights.

        The DCA comparison runs only when *principal* is given.
        *simulations* overrides every routine's path count.
        """
        parsed = self._parse_companies(companies)
        require_same_length(parsed, weights, "weights")
        w = AllocationValidator.enforce_constraints(weights)["adjusted"]

        returns, risks, _ = self._asset_vectors(parsed)
        corr = self._correlation(parsed, correlation_matrix)
        port_return = portfolio_expected_return(w, returns)
        port_risk = portfolio_risk(w, risks, corr)

        paths = {} if simulations is None else {"simulations": simulations}
        sim = self._simulator
        results = {
            "portfolio_return": round_to(port_return, 4),
            "portfolio_risk":   round_to(port_risk, 4),
            "drift":            sim.simulate_portfolio_drift(parsed, w, **paths),
            "rebalancing":      sim.calculate_rebalancing_impact(
                parsed, w, years, correlation_matrix=corr, **paths
            ),
            "optimal_threshold": sim.calculate_optimal_threshold(parsed, w, **paths),
            "panic_selling":    sim.calculate_panic_selling_impact(
                port_return, port_risk, years, **paths
            ),
            "dca_vs_lump_sum":  None,
        }
        if principal is not None:
            results["dca_vs_lump_sum"] = sim.compare_dca_vs_lump_sum(
                principal, monthly_amount, port_return, port_risk, years, **paths
            )
        return results

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _goal_key(metrics) -> str:
        return "goal_" + fingerprint({
            "target_amount":   metrics.target_amount,
            "initial_capital": metrics.initial_capital,
            "target_date":     metrics.target_date,
        })[:16]

    @staticmethod
    def _parse_companies(companies: Sequence):
        if not companies:
            raise InvalidInputError("At least one company is required.")
        return [Company.from_dict(c) if isinstance(c, Mapping) else c for c in companies]

    @staticmethod
    def _asset_vectors(companies):
        """Expected returns, risks and betas with the documented defaults."""
        returns = [
            as_float(c.expected_return, f"expected_return for {c.symbol!r}")
            if c.expected_return is not None else 0.0
            for c in companies
        ]
        risks = [
            as_float(c.risk, f"risk for {c.symbol!r}")
            if c.risk is not None else DEFAULT_ASSET_RISK
            for c in companies
        ]
        betas = [c.beta for c in companies]
        return returns, risks, betas

    @staticmethod
    def _correlation(companies, correlation_matrix):
        if correlation_matrix is None:
            return estimate_correlation_matrix(companies)
        return validate_correlation_matrix(correlation_matrix, size=len(companies))
