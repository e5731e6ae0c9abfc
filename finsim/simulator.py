"""
finsim/simulator.py
-------------------
Monte Carlo engine for drift, rebalancing, DCA, behavioural and goal
probability analysis.

Every routine compounds monthly::

    rₘ = μ / 12 / 100 + z · σ / √12 / 100        z ~ N(0, 1) (Box–Muller)
    Vₘ = max(0, Vₘ₋₁ · (1 + rₘ))

Paths are simulated side by side: each month draws one ``(paths, assets)``
array of shocks, so the loops run over months, never over paths.  Result
arrays are sorted before percentiles are cut (see
``financial_math.percentile_stats``).

Randomness comes from the injected :class:`NormalSampler`; the default is
a fresh OS-seeded generator, so two calls never share paths.
"""

from __future__ import annotations

import logging
import math
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np

from finsim.config import (
    CANDIDATE_THRESHOLDS,
    DCA_SIMULATIONS,
    DEFAULT_ASSET_RISK,
    DEFAULT_TRANSACTION_COST_BPS,
    DRIFT_SIMULATIONS,
    GOAL_PROBABILITY_SIMULATIONS,
    PANIC_CASH_MONTHS,
    PANIC_SIMULATIONS,
    PANIC_TRIGGER_DRAWDOWN,
    REBALANCING_SIMULATIONS,
    RISK_FREE_RATE,
    SIMULATION_WEIGHT_TOLERANCE,
    THRESHOLD_HORIZON_MONTHS,
    THRESHOLD_SIMULATIONS,
)
from finsim.constants import REBALANCES_PER_YEAR, STRATEGY_LABELS
from finsim.errors import InvalidInputError
from finsim.financial_math import (
    as_float,
    as_vector,
    covariance_matrix,
    estimate_correlation_matrix,
    one_sided_turnover,
    percentile_stats,
    portfolio_risk,
    require_same_length,
    round_to,
    validate_correlation_matrix,
)
from finsim.models import Company, SimulationResult
from finsim.random_source import NormalSampler

LOGGER = logging.getLogger(__name__)

_MONTHS_PER_YEAR = 12
_SQRT_12 = math.sqrt(12)


class StochasticSimulator:
    """
    Monte Carlo routines over an injectable normal sampler.

    Usage::

        sim = StochasticSimulator()                          # production
        sim = StochasticSimulator(NormalSampler.seeded(42))  # reproducible
        result = sim.compare_dca_vs_lump_sum(10_000, 500, 8, 15, 10)
    """

    def __init__(self, sampler: Optional[NormalSampler] = None):
        self._sampler = sampler if sampler is not None else NormalSampler()

    # ------------------------------------------------------------------ #
    #  Allocation drift
    # ------------------------------------------------------------------ #

    def simulate_portfolio_drift(
        self,
        companies: Sequence,
        initial_weights: Sequence[float],
        months: int = 36,
        simulations: int = DRIFT_SIMULATIONS,
    ) -> List[dict]:
        """
        Average allocation drift from *initial_weights* at quarterly
        checkpoints (month 0, 3, 6, … ≤ *months*).

        Each checkpoint holds ``month``, ``year``, ``weights`` (percent),
        ``drift`` (percentage points vs. target), ``allocation_sum`` and
        ``max_abs_drift``.  Paths whose value reaches zero are left out
        of the average; a checkpoint with no surviving path is skipped.
        """
        _, w, mu, vol = self._prepare_assets(companies, initial_weights)
        months = self._non_negative_int(months, "months")
        self._require_paths(simulations)

        values = np.tile(w, (simulations, 1))
        snapshots = [self._drift_checkpoint(0, values, w)]

        for month in range(1, months + 1):
            values = self._step(values, mu, vol)
            if month % 3 == 0:
                snapshot = self._drift_checkpoint(month, values, w)
                if snapshot is not None:
                    snapshots.append(snapshot)

        LOGGER.debug(
            "drift simulated: assets=%s months=%s paths=%s checkpoints=%s",
            len(w), months, simulations, len(snapshots),
        )
        return snapshots

    # ------------------------------------------------------------------ #
    #  Rebalancing frequency
    # ------------------------------------------------------------------ #

    def calculate_rebalancing_impact(
        self,
        companies: Sequence,
        initial_weights: Sequence[float],
        years: int = 10,
        correlation_matrix=None,
        transaction_cost_bps: float = DEFAULT_TRANSACTION_COST_BPS,
        simulations: int = REBALANCING_SIMULATIONS,
        risk_free_rate: float = RISK_FREE_RATE,
    ) -> dict:
        """
        Compare buy-and-hold, monthly and annual rebalancing.

        Each strategy runs on its own independent shocks.  Costs are
        ``turnover × bps / 10 000 × portfolio value`` at every rebalance
        event and are deducted from the terminal value.

        Returns are total percent over the horizon; Sharpe ratios use the
        annualised ``return / years`` against the covariance risk of the
        final weights (buy-and-hold) or the target weights (rebalanced).
        *correlation_matrix* defaults to the sector/beta estimate.

        Returns
        -------
        dict
            ``no_rebalance`` / ``monthly`` / ``yearly`` blocks, each with
            ``returns`` and ``sharpe`` (``SimulationResult``), ``costs``,
            ``avg_final_weights``, ``strategy`` and ``rebalances_per_year``,
            plus ``metadata``.
        """
        parsed, w, mu, vol = self._prepare_assets(companies, initial_weights)
        months = self._horizon_months(years)
        self._require_paths(simulations)
        bps = self._non_negative(transaction_cost_bps, "transaction_cost_bps")

        if correlation_matrix is None:
            corr = estimate_correlation_matrix(parsed)
        else:
            corr = validate_correlation_matrix(correlation_matrix, size=len(w))
        risks = vol * _SQRT_12 * 100
        cov = covariance_matrix(risks, corr)
        target_risk = portfolio_risk(w, risks, corr)

        output = {}
        for strategy in ("no_rebalance", "monthly", "yearly"):
            interval = {"no_rebalance": None, "monthly": 1, "yearly": 12}[strategy]
            totals, costs, final_weights = self._run_rebalancing(
                w, mu, vol, months, simulations, interval, bps
            )
            returns = (totals - costs - 1.0) * 100

            if interval is None:
                path_risk = np.sqrt(np.maximum(
                    0.0, np.einsum("pi,ij,pj->p", final_weights, cov, final_weights)
                ))
            else:
                path_risk = np.full(simulations, target_risk)
            sharpes = self._sharpe(returns / years, path_risk, risk_free_rate)

            output[strategy] = {
                "returns":             percentile_stats(returns),
                "sharpe":              percentile_stats(sharpes),
                "costs": (
                    percentile_stats(costs, decimals=4) if interval is not None
                    else SimulationResult(median=0.0, p25=0.0, p75=0.0, mean=0.0)
                ),
                "avg_final_weights":   [round_to(x * 100, 1) for x in final_weights.mean(axis=0)],
                "strategy":            STRATEGY_LABELS[strategy],
                "rebalances_per_year": REBALANCES_PER_YEAR[strategy],
            }

        output["metadata"] = {
            "simulations":          simulations,
            "years":                years,
            "transaction_cost_bps": bps,
            "risk_free_rate":       risk_free_rate,
            "target_risk":          round_to(target_risk, 2),
            "initial_weight_sum":   round_to(float(w.sum()), 4),
        }
        LOGGER.debug(
            "rebalancing impact simulated: assets=%s years=%s paths=%s",
            len(w), years, simulations,
        )
        return output

    # ------------------------------------------------------------------ #
    #  DCA vs lump sum
    # ------------------------------------------------------------------ #

    def compare_dca_vs_lump_sum(
        self,
        principal: float,
        monthly_amount: float,
        expected_return: float,
        volatility: float,
        years: int = 10,
        simulations: int = DCA_SIMULATIONS,
    ) -> dict:
        """
        Paired comparison of investing everything up front vs. the
        principal now plus *monthly_amount* at the end of every month.

        Both strategies see identical shocks on each path, and invest the
        same total.  ``win_rate`` is the share of paths on which DCA ends
        strictly ahead of lump sum on the *same* path.
        """
        principal = self._non_negative(principal, "principal")
        monthly_amount = self._non_negative(monthly_amount, "monthly_amount")
        mu, vol = self._monthly_params(expected_return, volatility)
        months = self._horizon_months(years)
        self._require_paths(simulations)

        total_invested = principal + monthly_amount * months
        dca = np.full(simulations, principal)
        lump = np.full(simulations, total_invested)

        for _ in range(months):
            growth = 1 + mu + self._sampler.standard_normal(simulations) * vol
            dca = np.maximum(0.0, dca * growth) + monthly_amount
            lump = np.maximum(0.0, lump * growth)

        # same-index comparison happens before any sorting
        win_rate = float(np.mean(dca > lump)) * 100

        dca_stats = percentile_stats(dca, decimals=0)
        lump_stats = percentile_stats(lump, decimals=0)
        dca_median = float(np.sort(dca)[simulations // 2])
        lump_median = float(np.sort(lump)[simulations // 2])

        difference_percent = (
            (lump_median - dca_median) / dca_median * 100 if dca_median > 0 else 0.0
        )
        if lump_median > dca_median:
            recommendation = (
                f"Lump sum has {round_to(difference_percent, 1)}% higher median outcome"
            )
        else:
            shortfall = (dca_median - lump_median) / lump_median * 100 if lump_median > 0 else 0.0
            recommendation = (
                f"DCA reduces risk but lowers expected value by {round_to(shortfall, 1)}%"
            )

        LOGGER.debug("dca vs lump sum simulated: months=%s paths=%s win_rate=%.1f",
                     months, simulations, win_rate)
        return {
            "dca": {
                "median":       dca_stats.median,
                "p25":          dca_stats.p25,
                "p75":          dca_stats.p75,
                "win_rate":     round_to(win_rate, 1),
                "total_return": self._total_return(dca_median, total_invested),
            },
            "lump_sum": {
                "median":       lump_stats.median,
                "p25":          lump_stats.p25,
                "p75":          lump_stats.p75,
                "total_return": self._total_return(lump_median, total_invested),
            },
            "total_invested":     round_to(total_invested, 2),
            "median_difference":  round_to(lump_median - dca_median, 0),
            "difference_percent": round_to(difference_percent, 1),
            "recommendation":     recommendation,
            "metadata": {
                "simulations":          simulations,
                "expected_return":      expected_return,
                "volatility":           volatility,
                "years":                years,
                "principal":            principal,
                "monthly_contribution": monthly_amount,
            },
        }

    # ------------------------------------------------------------------ #
    #  Behavioural: panic selling
    # ------------------------------------------------------------------ #

    def calculate_panic_selling_impact(
        self,
        expected_return: float,
        volatility: float,
        years: int = 10,
        simulations: int = PANIC_SIMULATIONS,
        trigger_drawdown: float = PANIC_TRIGGER_DRAWDOWN,
        cash_months: int = PANIC_CASH_MONTHS,
    ) -> dict:
        """
        Cost of an investor who sells after a *trigger_drawdown* fall from
        the initial 100 and buys back after *cash_months* in cash.

        Both agents see the same shocks.  The panic seller checks its value
        before the month's return is applied; months in cash earn 0%.
        ``panic_trigger_rate`` is the percent of paths that sold at least
        once.  ``opportunity_cost`` is the stay-invested median minus the
        panic-seller median.
        """
        mu, vol = self._monthly_params(expected_return, volatility)
        months = self._horizon_months(years)
        self._require_paths(simulations)
        trigger_level = 100 * (1 - trigger_drawdown)

        stay = np.full(simulations, 100.0)
        panic = np.full(simulations, 100.0)
        sold = np.zeros(simulations, dtype=bool)
        months_in_cash = np.zeros(simulations, dtype=int)
        ever_triggered = np.zeros(simulations, dtype=bool)

        for _ in range(months):
            growth = 1 + mu + self._sampler.standard_normal(simulations) * vol
            stay = np.maximum(0.0, stay * growth)

            trigger = ~sold & (panic < trigger_level)
            sold |= trigger
            ever_triggered |= trigger

            months_in_cash[sold] += 1
            reenter = sold & (months_in_cash > cash_months)
            sold &= ~reenter
            months_in_cash[reenter] = 0

            panic = np.where(sold, panic, np.maximum(0.0, panic * growth))

        stay_stats = percentile_stats(stay, decimals=0)
        panic_stats = percentile_stats(panic, decimals=0)
        stay_median = float(np.sort(stay)[simulations // 2])
        panic_median = float(np.sort(panic)[simulations // 2])
        trigger_rate = float(ever_triggered.mean()) * 100

        LOGGER.debug("panic selling simulated: months=%s paths=%s trigger_rate=%.1f",
                     months, simulations, trigger_rate)
        return {
            "stay_invested":      stay_stats.median,
            "stay_p25":           stay_stats.p25,
            "stay_p75":           stay_stats.p75,
            "panic_sell":         panic_stats.median,
            "panic_p25":          panic_stats.p25,
            "panic_p75":          panic_stats.p75,
            "opportunity_cost":   round_to(stay_median - panic_median, 0),
            "opportunity_cost_percent": (
                round_to((stay_median - panic_median) / panic_median * 100, 1)
                if panic_median > 0 else None
            ),
            "panic_trigger_rate": round_to(trigger_rate, 1),
            "metadata": {
                "simulations":         simulations,
                "years":               years,
                "trigger_threshold":   f"-{round_to(trigger_drawdown * 100, 1):g}% from initial investment",
                "cash_holding_period": f"{cash_months} months",
                "expected_return":     expected_return,
                "volatility":          volatility,
            },
        }

    # ------------------------------------------------------------------ #
    #  Threshold rebalancing
    # ------------------------------------------------------------------ #

    def calculate_optimal_threshold(
        self,
        companies: Sequence,
        initial_weights: Sequence[float],
        transaction_cost_bps: float = DEFAULT_TRANSACTION_COST_BPS,
        simulations: int = THRESHOLD_SIMULATIONS,
        months: int = THRESHOLD_HORIZON_MONTHS,
        thresholds: Sequence[float] = CANDIDATE_THRESHOLDS,
    ) -> dict:
        """
        Pick the drift threshold (percent) that maximises net return.

        A path rebalances in any month where some asset's weight is more
        than the threshold away from target.  All candidates are run on
        the same shock tensor so their differences come from the rule, not
        the draws.  ``net_return = avg_return − avg_costs × 100`` with
        costs as a fraction of the initial capital; ties go to the lowest
        threshold.
        """
        _, w, mu, vol = self._prepare_assets(companies, initial_weights)
        bps = self._non_negative(transaction_cost_bps, "transaction_cost_bps")
        months = self._non_negative_int(months, "months")
        self._require_paths(simulations)
        if not thresholds:
            raise InvalidInputError("At least one candidate threshold is required.")

        shocks = self._sampler.standard_normal((months, simulations, len(w)))
        years = months / _MONTHS_PER_YEAR if months else 1.0

        results = []
        for threshold in thresholds:
            returns, costs, counts = self._run_threshold(
                w, mu, vol, shocks, threshold / 100, bps
            )
            avg_return = float(returns.mean())
            avg_costs = float(costs.mean())
            avg_rebalances = float(counts.mean())
            results.append({
                "threshold":               threshold,
                "avg_return":              round_to(avg_return, 2),
                "avg_costs":               round_to(avg_costs, 6),
                "net_return":              round_to(avg_return - avg_costs * 100, 2),
                "rebalance_frequency":     round_to(avg_rebalances, 1),
                "avg_rebalances_per_year": round_to(avg_rebalances / years, 1),
            })

        optimal = results[0]
        for candidate in results[1:]:
            if candidate["net_return"] > optimal["net_return"]:
                optimal = candidate

        LOGGER.debug("optimal threshold found: threshold=%s paths=%s",
                     optimal["threshold"], simulations)
        return {
            "optimal_threshold":  optimal["threshold"],
            "optimal_net_return": optimal["net_return"],
            "optimal_frequency":  optimal["avg_rebalances_per_year"],
            "results":            results,
            "recommendation": (
                f"Rebalance when any asset drifts >{optimal['threshold']}% from target weight"
            ),
        }

    # ------------------------------------------------------------------ #
    #  Goal probability
    # ------------------------------------------------------------------ #

    def calculate_goal_probability(
        self,
        principal: float,
        monthly_contribution: float,
        expected_return: float,
        volatility: float,
        goal_amount: float,
        months: int,
        simulations: int = GOAL_PROBABILITY_SIMULATIONS,
    ) -> dict:
        """Percent of paths whose terminal balance reaches *goal_amount*."""
        principal = self._non_negative(principal, "principal")
        monthly_contribution = self._non_negative(monthly_contribution, "monthly_contribution")
        goal_amount = as_float(goal_amount, "goal_amount")
        if goal_amount <= 0:
            raise InvalidInputError(f"goal_amount must be positive (got {goal_amount}).")
        mu, vol = self._monthly_params(expected_return, volatility)
        months = self._non_negative_int(months, "months")
        self._require_paths(simulations)

        balance = np.full(simulations, principal)
        for _ in range(months):
            growth = 1 + mu + self._sampler.standard_normal(simulations) * vol
            balance = np.maximum(0.0, balance * growth) + monthly_contribution

        probability = float(np.mean(balance >= goal_amount)) * 100
        stats = percentile_stats(balance, decimals=0)
        LOGGER.debug("goal probability simulated: months=%s paths=%s probability=%.1f",
                     months, simulations, probability)
        return {
            "probability":    round_to(probability, 1),
            "median":         stats.median,
            "p25":            stats.p25,
            "p75":            stats.p75,
            "goal_amount":    goal_amount,
            "total_invested": round_to(principal + monthly_contribution * months, 2),
            "metadata": {
                "simulations":     simulations,
                "months":          months,
                "expected_return": expected_return,
                "volatility":      volatility,
            },
        }

    # ------------------------------------------------------------------ #
    #  Path mechanics
    # ------------------------------------------------------------------ #

    def _step(self, values: np.ndarray, mu: np.ndarray, vol: np.ndarray) -> np.ndarray:
        """Advance every path one month on fresh shocks."""
        z = self._sampler.standard_normal(values.shape)
        return np.maximum(0.0, values * (1 + mu + z * vol))

    def _run_rebalancing(
        self,
        w: np.ndarray,
        mu: np.ndarray,
        vol: np.ndarray,
        months: int,
        simulations: int,
        interval: Optional[int],
        bps: float,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Terminal totals, accumulated costs and final weights for one strategy."""
        values = np.tile(w, (simulations, 1))
        costs = np.zeros(simulations)

        for month in range(months):
            values = self._step(values, mu, vol)
            if interval is not None and (month + 1) % interval == 0:
                total = values.sum(axis=1)
                current = self._current_weights(values, total, w)
                costs += one_sided_turnover(current, w) * bps / 10_000 * total
                values = total[:, None] * w

        total = values.sum(axis=1)
        return total, costs, self._current_weights(values, total, w)

    @staticmethod
    def _run_threshold(
        w: np.ndarray,
        mu: np.ndarray,
        vol: np.ndarray,
        shocks: np.ndarray,
        threshold: float,
        bps: float,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        simulations = shocks.shape[1]
        values = np.tile(w, (simulations, 1))
        costs = np.zeros(simulations)
        counts = np.zeros(simulations, dtype=int)

        for z in shocks:
            values = np.maximum(0.0, values * (1 + mu + z * vol))
            total = values.sum(axis=1)
            alive = total > 0
            current = StochasticSimulator._current_weights(values, total, w)
            rebalance = alive & (np.abs(current - w).max(axis=1) > threshold)
            if rebalance.any():
                costs[rebalance] += (
                    one_sided_turnover(current[rebalance], w) * bps / 10_000 * total[rebalance]
                )
                values[rebalance] = total[rebalance][:, None] * w
                counts += rebalance

        final = values.sum(axis=1)
        returns = np.where(final > 0, (final - 1.0) * 100, -100.0)
        return returns, costs, counts

    @staticmethod
    def _current_weights(values: np.ndarray, total: np.ndarray, target: np.ndarray) -> np.ndarray:
        """Row weights; a wiped-out path reports the target weights."""
        safe = np.where(total > 0, total, 1.0)
        weights = values / safe[:, None]
        weights[total <= 0] = target
        return weights

    @staticmethod
    def _drift_checkpoint(month: int, values: np.ndarray, target: np.ndarray) -> Optional[dict]:
        total = values.sum(axis=1)
        alive = total > 0
        if not alive.any():
            return None
        avg = (values[alive] / total[alive, None]).mean(axis=0)
        avg = avg / avg.sum()
        drift = (avg - target) * 100
        return {
            "month":          month,
            "year":           round_to(month / _MONTHS_PER_YEAR, 1),
            "weights":        [round_to(x * 100, 1) for x in avg],
            "drift":          [round_to(x, 1) for x in drift],
            "allocation_sum": round_to(float(avg.sum()) * 100, 1),
            "max_abs_drift":  round_to(float(np.abs(drift).max()), 1),
        }

    @staticmethod
    def _sharpe(annual_returns: np.ndarray, risks: np.ndarray, risk_free_rate: float) -> np.ndarray:
        """Vectorised Sharpe ratio; zero where risk is effectively zero."""
        safe = np.where(np.abs(risks) < 1e-10, 1.0, risks)
        return np.where(np.abs(risks) < 1e-10, 0.0, (annual_returns - risk_free_rate) / safe)

    @staticmethod
    def _total_return(median: float, invested: float) -> float:
        return round_to((median / invested - 1) * 100, 1) if invested > 0 else 0.0

    # ------------------------------------------------------------------ #
    #  Input preparation
    # ------------------------------------------------------------------ #

    @staticmethod
    def _prepare_assets(
        companies: Sequence,
        weights: Sequence[float],
    ) -> Tuple[List[Company], np.ndarray, np.ndarray, np.ndarray]:
        """
        Validate companies and weights; return companies plus monthly
        drift and volatility vectors.

        A weight vector more than 1% away from summing to one is rescaled
        with a warning.
        """
        if not companies:
            raise InvalidInputError("Simulation needs at least one company.")
        parsed = [Company.from_dict(c) if isinstance(c, Mapping) else c for c in companies]

        w = as_vector(weights)
        require_same_length(parsed, w, "initial_weights")
        if np.any(w < 0):
            raise InvalidInputError("Simulation weights cannot be negative.")
        total = float(w.sum())
        if total == 0:
            raise InvalidInputError("Simulation weights sum to zero.")
        if abs(total - 1.0) > SIMULATION_WEIGHT_TOLERANCE:
            LOGGER.warning("initial weights sum to %.4f; normalising to 1.0", total)
            w = w / total

        returns = np.array([
            as_float(c.expected_return, f"expected_return for {c.symbol!r}")
            if c.expected_return is not None else 0.0
            for c in parsed
        ])
        risks = np.array([
            as_float(c.risk, f"risk for {c.symbol!r}")
            if c.risk is not None else DEFAULT_ASSET_RISK
            for c in parsed
        ])
        if np.any(risks < 0):
            raise InvalidInputError("Asset risk cannot be negative.")

        return parsed, w, returns / _MONTHS_PER_YEAR / 100, risks / _SQRT_12 / 100

    @staticmethod
    def _monthly_params(expected_return: float, volatility: float) -> Tuple[float, float]:
        mu = as_float(expected_return, "expected_return")
        sigma = StochasticSimulator._non_negative(volatility, "volatility")
        return mu / _MONTHS_PER_YEAR / 100, sigma / _SQRT_12 / 100

    @staticmethod
    def _horizon_months(years) -> int:
        years = as_float(years, "years")
        if years <= 0:
            raise InvalidInputError(f"years must be positive (got {years}).")
        return int(round(years * _MONTHS_PER_YEAR))

    @staticmethod
    def _non_negative(value, name: str) -> float:
        value = as_float(value, name)
        if value < 0:
            raise InvalidInputError(f"{name} must be non-negative (got {value}).")
        return value

    @staticmethod
    def _non_negative_int(value, name: str) -> int:
        value = StochasticSimulator._non_negative(value, name)
        return int(value)

    @staticmethod
    def _require_paths(simulations) -> None:
        if isinstance(simulations, bool) or not isinstance(simulations, (int, np.integer)) \
                or simulations < 1:
            raise InvalidInputError(f"simulations must be a positive integer (got {simulations!r}).")
