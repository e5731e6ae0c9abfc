"""
finsim/goal_metrics.py
----------------------
Single source of truth for goal progress.

Design contract:
  - Every goal figure shown anywhere is produced here
  - Pure and deterministic (all methods are @staticmethod)
  - Invalid goals raise InvalidGoalError; nothing is replaced with zeros

Holdings are positions bought *in addition to* the goal's initial
allocation, so::

    portfolio_value  = max(0, initial_capital + holdings_value)
    progress_percent = portfolio_value / target_amount × 100

With no holdings the portfolio value is exactly the initial capital.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Dict, Mapping, Optional, Sequence, Union

from finsim.config import AVG_DAYS_PER_MONTH, MAX_PROJECTION_MONTHS
from finsim.errors import InvalidGoalError, InvalidInputError
from finsim.financial_math import as_float, is_numeric, round_to, round_whole
from finsim.models import Goal, GoalMetrics, Holding

LOGGER = logging.getLogger(__name__)


def _symbol_of(holding) -> Optional[str]:
    if isinstance(holding, Mapping):
        return holding.get("symbol")
    return getattr(holding, "symbol", None)


class GoalMetricsCalculator:
    """
    Convert a goal plus its holdings into progress metrics.

    Entry point::

        metrics = GoalMetricsCalculator.compute_goal_metrics(goal, holdings)
        metrics.progress_percent   # e.g. 50.0
    """

    # ------------------------------------------------------------------ #
    #  Public entry point
    # ------------------------------------------------------------------ #

    @staticmethod
    def compute_goal_metrics(
        goal: Union[Goal, Mapping],
        holdings: Optional[Sequence[Union[Holding, Mapping]]] = None,
        reference_date: Optional[date] = None,
    ) -> GoalMetrics:
        """
        Compute progress metrics for *goal*.

        Parameters
        ----------
        goal:
            ``Goal`` (or mapping with the same keys).
        holdings:
            Every tracked position.  May be empty.  Which of them count
            towards the goal is decided by ``select_holdings``.
        reference_date:
            "Today" for the months-remaining calculation.  Defaults to
            ``date.today()``.

        Returns
        -------
        GoalMetrics
            Monetary fields rounded to whole units, ``progress_percent`` to
            one decimal, ``months_remaining`` to two.

        Raises
        ------
        InvalidGoalError
            ``target_amount`` missing, non-numeric or ≤ 0, or a malformed
            ``current_allocation`` / ``target_date``.
        InvalidInputError
            A holding with a negative quantity or a non-numeric price.
        """
        goal = GoalMetricsCalculator._coerce_goal(goal)
        target_amount = GoalMetricsCalculator._target_amount(goal)
        initial_capital = GoalMetricsCalculator._initial_capital(goal)
        target_date = GoalMetricsCalculator._parse_target_date(goal.target_date)

        today = reference_date or date.today()
        months_remaining = GoalMetricsCalculator.months_between(today, target_date)

        selected = GoalMetricsCalculator.select_holdings(goal, holdings or [])
        holdings_value = GoalMetricsCalculator.holdings_value(selected)

        portfolio_value = max(0.0, initial_capital + holdings_value)
        progress_percent = portfolio_value / target_amount * 100
        remaining_gap = max(0.0, target_amount - portfolio_value)

        required_monthly = (
            remaining_gap / months_remaining if months_remaining > 0 else remaining_gap
        )

        LOGGER.debug(
            "goal metrics computed: target=%s initial=%s holdings=%s progress=%.1f",
            target_amount, initial_capital, holdings_value, progress_percent,
        )

        return GoalMetrics(
            initial_capital=round_whole(initial_capital),
            holdings_value=round_whole(holdings_value),
            portfolio_value=round_whole(portfolio_value),
            target_amount=round_whole(target_amount),
            progress_percent=round_to(progress_percent, 1),
            remaining_gap=round_whole(remaining_gap),
            months_remaining=round_to(months_remaining, 2),
            required_monthly_to_close_gap=round_whole(required_monthly),
            target_date=target_date.isoformat() if target_date else None,
            breakdown={
                "contributed":   round_whole(initial_capital),
                "from_holdings": round_whole(holdings_value),
                "total":         round_whole(portfolio_value),
            },
        )

    # ------------------------------------------------------------------ #
    #  Building blocks
    # ------------------------------------------------------------------ #

    @staticmethod
    def select_holdings(
        goal: Union[Goal, Mapping],
        holdings: Sequence[Union[Holding, Mapping]],
    ) -> list:
        """
        Holdings that fund *goal*, in priority order:

        1. those whose symbol is listed in ``goal.assigned_holdings``;
        2. every holding, when none matched and ``goal.is_linked`` is set;
        3. every holding, when the goal has no assignments at all.

        A goal whose assignments match nothing and which is not linked is
        funded by no holdings.
        """
        goal = GoalMetricsCalculator._coerce_goal(goal)
        holdings = list(holdings)
        assigned = goal.assigned_holdings or ()
        if isinstance(assigned, str):
            assigned = [assigned]
        assigned = set(assigned)

        selected = [h for h in holdings if _symbol_of(h) in assigned]
        if selected:
            return selected
        if goal.is_linked is True or not assigned:
            return holdings
        LOGGER.debug("no holdings match goal assignments %s", sorted(assigned))
        return []

    @staticmethod
    def holdings_value(holdings: Sequence[Union[Holding, Mapping]]) -> float:
        """Σ quantity × (current_price or average_cost)"""
        total = 0.0
        for h in holdings:
            if isinstance(h, Mapping):
                h = Holding.from_dict(h)
            quantity = as_float(h.quantity, f"quantity for {h.symbol!r}")
            if quantity < 0:
                raise InvalidInputError(
                    f"Holding {h.symbol!r} has a negative quantity ({quantity})."
                )
            raw_price = h.current_price
            # no quote yet: value at cost
            if raw_price is None or raw_price == "" or (is_numeric(raw_price) and raw_price == 0):
                raw_price = h.average_cost
            price = as_float(raw_price, f"price for {h.symbol!r}")
            if price < 0:
                raise InvalidInputError(f"Holding {h.symbol!r} has a negative price ({price}).")
            total += quantity * price
        return total

    @staticmethod
    def months_between(start: date, end: Optional[date]) -> float:
        """Average-length months from *start* to *end*; 0 when none remain."""
        if end is None:
            return 0.0
        if isinstance(start, datetime):
            start = start.date()
        if end <= start:
            LOGGER.warning("goal target date %s is not after %s; no months remain", end, start)
            return 0.0
        return (end - start).days / AVG_DAYS_PER_MONTH

    @staticmethod
    def future_value(
        principal: float,
        monthly_contribution: float,
        annual_rate: float,
        months: float,
    ) -> float:
        """
        FV = P(1+r)ⁿ + PMT × [((1+r)ⁿ − 1) / r]   with r = annual_rate / 12.

        ``annual_rate`` is a decimal (0.08 == 8%).  A zero rate reduces to
        the plain sum of contributions.
        """
        monthly_rate = annual_rate / 12
        if monthly_rate == 0:
            return principal + monthly_contribution * months
        growth = (1 + monthly_rate) ** months
        return principal * growth + monthly_contribution * ((growth - 1) / monthly_rate)

    # ------------------------------------------------------------------ #
    #  Deterministic scenarios
    # ------------------------------------------------------------------ #

    @staticmethod
    def calculate_stress_test_metrics(
        goal: Union[Goal, Mapping],
        monthly_contribution: float = 0.0,
        months: int = 18,
        annual_return_rate: float = 0.08,
    ) -> dict:
        """
        Portfolio value *months* from now under a fixed growth assumption.

        Separates what was contributed from what the market added::

            total_contributions = initial + monthly × months
            market_growth       = FV(initial) + FV(annuity) − total_contributions
        """
        goal = GoalMetricsCalculator._coerce_goal(goal)
        initial_capital = GoalMetricsCalculator._initial_capital(goal)
        monthly_contribution = as_float(monthly_contribution, "monthly_contribution")
        if months < 0:
            raise InvalidInputError(f"months must be non-negative (got {months}).")

        total_contributions = initial_capital + monthly_contribution * months
        value_with_growth = GoalMetricsCalculator.future_value(
            initial_capital, monthly_contribution, annual_return_rate, months
        )
        market_growth = value_with_growth - total_contributions

        return {
            "months_analyzed":             months,
            "annual_return_assumption":    round_to(annual_return_rate * 100, 1),
            "initial_capital":             round_whole(initial_capital),
            "monthly_contribution":        round_whole(monthly_contribution),
            "total_contributions":         round_whole(total_contributions),
            "portfolio_value_with_growth": round_whole(value_with_growth),
            "estimated_market_growth":     round_whole(market_growth),
            "growth_percent": (
                round_to(market_growth / total_contributions * 100, 1)
                if total_contributions > 0 else 0.0
            ),
        }

    @staticmethod
    def calculate_projections(
        initial_capital: float,
        monthly_contribution: float,
        target_amount: float,
        annual_return_rate: float = 0.08,
        annual_volatility: float = 0.15,
    ) -> Dict[str, dict]:
        """
        Pessimistic / expected / optimistic paths to *target_amount*.

        Pessimistic uses ``rate − volatility`` (floored at −50%), optimistic
        ``rate + volatility`` (capped at 40%).  Rates are decimals.
        """
        target_amount = as_float(target_amount, "target_amount")
        if target_amount <= 0:
            raise InvalidGoalError(f"Invalid goal target amount: {target_amount!r}")

        rates = {
            "pessimistic": max(-0.50, annual_return_rate - annual_volatility),
            "expected":    annual_return_rate,
            "optimistic":  min(0.40, annual_return_rate + annual_volatility),
        }
        scenarios = {}
        for name, rate in rates.items():
            months = GoalMetricsCalculator._months_to_target(
                initial_capital, monthly_contribution, target_amount, rate
            )
            scenarios[name] = GoalMetricsCalculator._projection_scenario(
                name, initial_capital, monthly_contribution, rate, months, target_amount
            )
        return scenarios

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _coerce_goal(goal) -> Goal:
        if goal is None:
            raise InvalidGoalError("Goal is missing.")
        if isinstance(goal, Mapping):
            return Goal.from_dict(goal)
        return goal

    @staticmethod
    def _target_amount(goal: Goal) -> float:
        if not is_numeric(goal.target_amount) or float(goal.target_amount) <= 0:
            raise InvalidGoalError(f"Invalid goal target amount: {goal.target_amount!r}")
        return float(goal.target_amount)

    @staticmethod
    def _initial_capital(goal: Goal) -> float:
        if goal.current_allocation is None:
            return 0.0
        if not is_numeric(goal.current_allocation):
            raise InvalidGoalError(
                f"Invalid goal current allocation: {goal.current_allocation!r}"
            )
        value = float(goal.current_allocation)
        if value < 0:
            raise InvalidGoalError(f"Goal current allocation cannot be negative ({value}).")
        return value

    @staticmethod
    def _parse_target_date(raw) -> Optional[date]:
        if raw is None or raw == "":
            return None
        if isinstance(raw, datetime):
            return raw.date()
        if isinstance(raw, date):
            return raw
        if isinstance(raw, str):
            try:
                return datetime.fromisoformat(raw.strip()).date()
            except ValueError as exc:
                raise InvalidGoalError(f"Invalid goal target date: {raw!r}") from exc
        raise InvalidGoalError(f"Invalid goal target date: {raw!r}")

    @staticmethod
    def _months_to_target(
        initial: float,
        monthly: float,
        target: float,
        rate: float,
    ) -> Optional[float]:
        """Months until FV reaches *target*; ``None`` when it never does."""
        if rate <= 0:
            if initial >= target:
                return 0.0
            return (target - initial) / monthly if monthly > 0 else None

        # Bisection on FV(n) = target over [0, MAX_PROJECTION_MONTHS]
        low, high = 0.0, float(MAX_PROJECTION_MONTHS)
        for _ in range(30):
            mid = (low + high) / 2
            fv = GoalMetricsCalculator.future_value(initial, monthly, rate, mid)
            if abs(fv - target) < 100:
                return mid
            if fv < target:
                low = mid
            else:
                high = mid
        return (low + high) / 2

    @staticmethod
    def _projection_scenario(
        name: str,
        initial: float,
        monthly: float,
        rate: float,
        months: Optional[float],
        target: float,
    ) -> dict:
        if months is None:
            return {
                "name":                name.capitalize(),
                "annual_return":       round_to(rate * 100, 1),
                "months_to_goal":      None,
                "years_to_goal":       None,
                "total_contributions": None,
                "projected_value":     None,
                "growth_from_returns": None,
                "achieves_goal":       False,
            }

        fv = GoalMetricsCalculator.future_value(initial, monthly, rate, months)
        contributions = initial + monthly * months
        return {
            "name":                name.capitalize(),
            "annual_return":       round_to(rate * 100, 1),
            "months_to_goal":      round_whole(months),
            "years_to_goal":       round_to(months / 12, 1),
            "total_contributions": round_whole(contributions),
            "projected_value":     round_whole(fv),
            "growth_from_returns": round_whole(fv - contributions),
            # bisection stops within 100 units of the target
            "achieves_goal":       fv >= target - 100,
        }
