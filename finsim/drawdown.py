"""
finsim/drawdown.py
------------------
Attribution of portfolio drawdown to assets and sectors, plus recovery
and tail-drawdown estimates.

Conventions:
  - ``portfolio_drawdown`` is a positive magnitude in percent (25 == −25%).
  - Risks and expected returns are annual percent; weights are decimals.

Marginal contribution (Euler-style)::

    marginalᵢ     = wᵢ · βᵢ · σᵢ / 100
    contributionᵢ = marginalᵢ · portfolio_drawdown
    shareᵢ        = contributionᵢ / Σ contribution × 100
"""

from __future__ import annotations

import logging
import math
from typing import List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from finsim.config import (
    DRAWDOWN_FLOOR,
    HIGH_TAIL_CONCENTRATION,
    MEDIUM_TAIL_CONCENTRATION,
    MIN_HISTORICAL_OBSERVATIONS,
    PESSIMISTIC_RECOVERY_MULTIPLIER,
    RECOVERY_VOLATILITY_PENALTY,
    TOP_CONTRIBUTOR_THRESHOLD,
    WORST_CASE_DRAWDOWN_MULTIPLIER,
)
from finsim.enums import ConcentrationLevel
from finsim.errors import InvalidInputError
from finsim.financial_math import (
    absorb_residual,
    as_float,
    as_vector,
    is_numeric,
    require_same_length,
    round_to,
)
from finsim.models import Company, DrawdownContribution

LOGGER = logging.getLogger(__name__)

# Student-t (df = 5) one-sided critical values for the tail estimates.
_T_CRITICAL_95 = 2.015
_T_CRITICAL_99 = 3.365


class DrawdownDecomposer:
    """Stateless drawdown attribution helpers."""

    # ------------------------------------------------------------------ #
    #  Asset-level attribution
    # ------------------------------------------------------------------ #

    @staticmethod
    def decompose_drawdown(
        weights: Sequence[float],
        risks: Sequence[float],
        betas: Optional[Sequence[Optional[float]]],
        portfolio_drawdown: float,
        symbols: Optional[Sequence[str]] = None,
    ) -> List[DrawdownContribution]:
        """
        Split *portfolio_drawdown* across the assets.

        Missing betas (``None`` list or ``None`` entries) count as 1.0.
        ``percent_of_drawdown`` is rounded to one decimal with the largest
        contributor absorbing the rounding residual, so the shares sum to
        exactly 100.0.  When every contribution is zero all shares are 0.0.

        Returns
        -------
        list[DrawdownContribution]
            Sorted by contribution, largest first.  ``asset_index`` keeps
            the original position.

        Raises
        ------
        InvalidInputError
            Empty or mismatched vectors, non-numeric entries, or a
            drawdown of 100% or more.
        """
        w = as_vector(weights)
        r = as_vector(risks, "risks")
        require_same_length(w, r, "risks")
        if betas is None:
            b = np.ones_like(w)
        else:
            require_same_length(w, betas, "betas")
            b = as_vector([1.0 if beta is None else beta for beta in betas], "betas")
        if symbols is not None:
            require_same_length(w, symbols, "symbols")
        drawdown = DrawdownDecomposer._drawdown_magnitude(portfolio_drawdown)

        marginal = w * b * (r / 100)
        contribution = marginal * drawdown
        total = float(contribution.sum())

        if total == 0:
            shares = [0.0] * len(w)
        else:
            shares = absorb_residual(contribution / total * 100, 100.0, 1)

        # stable sort keeps input order among equal contributions
        order = sorted(range(len(w)), key=lambda i: -contribution[i])
        result = [
            DrawdownContribution(
                asset_index=i,
                weight=round_to(w[i] * 100, 1),
                risk=round_to(r[i], 1),
                beta=round_to(b[i], 2),
                marginal_contribution=round_to(marginal[i], 4),
                drawdown_contribution=round_to(contribution[i], 2),
                percent_of_drawdown=shares[i],
                symbol=symbols[i] if symbols is not None else None,
            )
            for i in order
        ]
        LOGGER.debug("drawdown decomposed: assets=%s drawdown=%s total=%.4f", len(w), drawdown, total)
        return result

    @staticmethod
    def identify_top_contributors(
        contributions: Sequence[DrawdownContribution],
        threshold: float = TOP_CONTRIBUTOR_THRESHOLD,
    ) -> List[DrawdownContribution]:
        """Contributions whose share of drawdown exceeds *threshold* percent."""
        return [c for c in contributions if c.percent_of_drawdown > threshold]

    @staticmethod
    def calculate_drawdown_diversification_benefit(
        weights: Sequence[float],
        risks: Sequence[float],
        portfolio_drawdown: float,
    ) -> dict:
        """
        Compare *portfolio_drawdown* to a worst case of the whole portfolio
        in the riskiest asset (max risk × 1.5).
        """
        w = as_vector(weights)
        r = as_vector(risks, "risks")
        require_same_length(w, r, "risks")
        drawdown = DrawdownDecomposer._drawdown_magnitude(portfolio_drawdown)

        worst_case = float(r.max()) * WORST_CASE_DRAWDOWN_MULTIPLIER
        benefit = worst_case - drawdown
        benefit_percent = benefit / worst_case * 100 if worst_case > 0 else 0.0

        return {
            "portfolio_drawdown":      round_to(drawdown, 1),
            "worst_case_drawdown":     round_to(worst_case, 1),
            "diversification_benefit": round_to(benefit, 1),
            "benefit_percent":         round_to(benefit_percent, 1),
            "message": (
                f"Diversification reduces drawdown risk by {round_to(benefit_percent, 1)}%"
            ),
        }

    @staticmethod
    def estimate_recovery_time(
        drawdown_percent: float,
        expected_return: float,
        volatility: float,
    ) -> dict:
        """
        Years needed to climb back from a *drawdown_percent* fall.

        Deterministic time is ``ln(1 + D/(1−D)) / ln(1 + μ)``; the expected
        estimate multiplies it by ``1 + 0.3·σ/100``.  Optimistic is the
        deterministic figure, pessimistic is 1.5× the expected one.

        A non-positive expected return never recovers: the year fields are
        ``None`` and ``recoverable`` is ``False``.
        """
        drawdown = DrawdownDecomposer._drawdown_magnitude(drawdown_percent)
        mu = as_float(expected_return, "expected_return")
        sigma = as_float(volatility, "volatility")
        if sigma < 0:
            raise InvalidInputError(f"volatility must be non-negative (got {sigma}).")

        recovery_return = drawdown / (100 - drawdown)

        if drawdown > 0 and mu <= 0:
            LOGGER.warning(
                "recovery time undefined: drawdown=%s expected_return=%s", drawdown, mu
            )
            return {
                "drawdown_percent":        round_to(drawdown, 1),
                "recovery_return_needed":  round_to(recovery_return * 100, 1),
                "expected_years":          None,
                "optimistic_years":        None,
                "pessimistic_years":       None,
                "recoverable":             False,
                "message": "No recovery expected with a non-positive expected return",
            }

        if drawdown == 0:
            deterministic = 0.0
        else:
            deterministic = math.log(1 + recovery_return) / math.log(1 + mu / 100)
        expected = deterministic * (1 + sigma / 100 * RECOVERY_VOLATILITY_PENALTY)
        pessimistic = expected * PESSIMISTIC_RECOVERY_MULTIPLIER

        return {
            "drawdown_percent":       round_to(drawdown, 1),
            "recovery_return_needed": round_to(recovery_return * 100, 1),
            "expected_years":         round_to(expected, 1),
            "optimistic_years":       round_to(deterministic, 1),
            "pessimistic_years":      round_to(pessimistic, 1),
            "recoverable":            True,
            "message": (
                f"Expected recovery: {round_to(expected, 1)} years "
                f"(range: {round_to(deterministic, 1)}-{round_to(pessimistic, 1)} years)"
            ),
        }

    # ------------------------------------------------------------------ #
    #  Aggregation
    # ------------------------------------------------------------------ #

    @staticmethod
    def decompose_drawdown_by_sector(
        companies: Sequence,
        contributions: Sequence[DrawdownContribution],
    ) -> List[dict]:
        """
        Sum asset contributions per sector.

        Companies are matched by each contribution's ``asset_index`` (the
        contributions arrive sorted, not in company order).  Assets without
        a sector are grouped under ``"Unknown"``.
        """
        if not contributions:
            return []
        records = []
        for c in contributions:
            if not 0 <= c.asset_index < len(companies):
                raise InvalidInputError(
                    f"Contribution asset_index {c.asset_index} has no matching company."
                )
            company = companies[c.asset_index]
            if isinstance(company, Mapping):
                company = Company.from_dict(company)
            records.append({
                "sector":                company.sector or "Unknown",
                "total_weight":          c.weight,
                "drawdown_contribution": c.drawdown_contribution,
                "percent_of_drawdown":   c.percent_of_drawdown,
            })

        df = pd.DataFrame(records)
        grouped = (
            df.groupby("sector", sort=False)
              .agg(
                  total_weight=("total_weight", "sum"),
                  drawdown_contribution=("drawdown_contribution", "sum"),
                  percent_of_drawdown=("percent_of_drawdown", "sum"),
                  asset_count=("total_weight", "size"),
              )
              .sort_values("drawdown_contribution", ascending=False, kind="stable")
              .reset_index()
        )

        return [
            {
                "sector":                row.sector,
                "total_weight":          round_to(row.total_weight, 1),
                "drawdown_contribution": round_to(row.drawdown_contribution, 2),
                "percent_of_drawdown":   round_to(row.percent_of_drawdown, 1),
                "asset_count":           int(row.asset_count),
            }
            for row in grouped.itertuples(index=False)
        ]

    @staticmethod
    def analyze_tail_risk_concentration(
        contributions: Sequence[DrawdownContribution],
    ) -> dict:
        """
        Share of drawdown held by the top 3 / top 5 contributors.

        Top-3 share > 70% → high, > 50% → medium, otherwise low.
        """
        shares = sorted((c.percent_of_drawdown for c in contributions), reverse=True)
        top3 = sum(shares[:3])
        top5 = sum(shares[:5])

        if top3 > HIGH_TAIL_CONCENTRATION:
            level = ConcentrationLevel.HIGH
        elif top3 > MEDIUM_TAIL_CONCENTRATION:
            level = ConcentrationLevel.MEDIUM
        else:
            level = ConcentrationLevel.LOW

        return {
            "top3_contribution":   round_to(top3, 1),
            "top5_contribution":   round_to(top5, 1),
            "concentration_level": level,
            "message": (
                f"Top 3 assets contribute {round_to(top3, 1)}% of drawdown risk "
                f"({level.value} concentration)"
            ),
        }

    # ------------------------------------------------------------------ #
    #  Drawdown estimates
    # ------------------------------------------------------------------ #

    @staticmethod
    def calculate_historical_drawdown(monthly_returns: Sequence[float]) -> Optional[float]:
        """
        Worst peak-to-trough decline of a monthly return series.

        Parameters
        ----------
        monthly_returns:
            Decimal returns (0.02 == +2%).  Fewer than 12 observations
            yields ``None``.

        Returns
        -------
        float or None
            Negative percent, clamped to [−85, 0].
        """
        if monthly_returns is None or len(monthly_returns) < MIN_HISTORICAL_OBSERVATIONS:
            return None
        returns = pd.Series(as_vector(monthly_returns, "monthly_returns"))

        wealth = (1 + returns).cumprod()
        # the starting capital of 1.0 is the first peak
        running_peak = wealth.cummax().clip(lower=1.0)
        drawdowns = (wealth - running_peak) / running_peak
        worst = float(drawdowns.min()) * 100
        return round_to(min(0.0, max(DRAWDOWN_FLOOR, worst)), 2)

    @staticmethod
    def calculate_statistical_drawdown(
        volatility: float,
        horizon_years: float,
        expected_return: float,
    ) -> dict:
        """
        Tail drawdowns from Student-t (df = 5) critical values with drift::

            dd_q = (−t_q · σ · √T + μ · T) × 100

        95th percentile clamped to [−85, −8], 99th to [−85, −10].
        """
        sigma = as_float(volatility, "volatility") / 100
        mu = as_float(expected_return, "expected_return") / 100
        horizon = as_float(horizon_years, "horizon_years")
        if sigma < 0 or horizon < 0:
            raise InvalidInputError("volatility and horizon_years must be non-negative.")

        dd95 = (-_T_CRITICAL_95 * sigma * math.sqrt(horizon) + mu * horizon) * 100
        dd99 = (-_T_CRITICAL_99 * sigma * math.sqrt(horizon) + mu * horizon) * 100

        return {
            "percentile_95": round_to(min(-8.0, max(DRAWDOWN_FLOOR, dd95)), 2),
            "percentile_99": round_to(min(-10.0, max(DRAWDOWN_FLOOR, dd99)), 2),
            "confidence":    "95%",
            "methodology":   "Student's t-distribution (df=5) with drift adjustment",
        }

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _drawdown_magnitude(value) -> float:
        """Drawdowns are magnitudes: the sign is dropped; 100% or more is invalid."""
        if not is_numeric(value):
            raise InvalidInputError(f"Drawdown must be a finite number (got {value!r}).")
        magnitude = abs(float(value))
        if magnitude >= 100:
            raise InvalidInputError(f"Drawdown must be below 100% (got {magnitude}).")
        return magnitude
