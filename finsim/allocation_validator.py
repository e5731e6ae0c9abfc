"""
finsim/allocation_validator.py
------------------------------
Structural checks and repairs for a weight vector.

Weights are decimals (0.25 == 25%) in company order.  Constraint breaches
are reported as ``ValidationIssue`` records; only malformed vectors
(empty, non-numeric, mismatched lengths) raise ``InvalidInputError``.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

import numpy as np

from finsim.config import (
    DEFAULT_TRANSACTION_COST_BPS,
    HHI_CONCENTRATION_LIMIT,
    MAX_POSITION,
    MAX_POSITIONS,
    MIN_POSITION,
    POSITION_SIZING_DRIFT_LIMIT,
    REBALANCE_CONSIDER_MAX_COST,
    REBALANCE_NOW_MAX_COST,
    WEIGHT_DECIMALS,
    WEIGHT_SUM_TOLERANCE,
)
from finsim.constants import (
    DUST_POSITION,
    HIGH_CONCENTRATION,
    MAX_POSITION_EXCEEDED,
    NEGATIVE_WEIGHT,
    REASON_DUST,
    REASON_MAX_POSITION,
    REBALANCE_MESSAGES,
    ROUNDING_DRIFT,
    SUM_CONSTRAINT,
    TOO_MANY_POSITIONS,
    UNBUYABLE_POSITION,
)
from finsim.enums import RebalanceAdvice, Severity
from finsim.errors import InvalidInputError
from finsim.financial_math import (
    absorb_residual,
    as_float,
    as_vector,
    herfindahl_index,
    one_sided_turnover,
    require_same_length,
    round_to,
)
from finsim.models import ValidationIssue, ValidationReport

LOGGER = logging.getLogger(__name__)


class AllocationValidator:
    """
    Validate and repair portfolio weights.

    Usage::

        report = AllocationValidator.validate_allocation([0.5, 0.3, 0.3])
        report.codes()        # ["sum_constraint", "max_position", ...]

        repaired = AllocationValidator.enforce_constraints([0.5, 0.3, 0.3])
        repaired["adjusted"]  # [0.4, 0.3, 0.3]
    """

    # ------------------------------------------------------------------ #
    #  Validation
    # ------------------------------------------------------------------ #

    @staticmethod
    def validate_allocation(
        weights: Sequence[float],
        max_position: float = MAX_POSITION,
        min_position: float = MIN_POSITION,
        max_positions: int = MAX_POSITIONS,
        require_diversification: bool = True,
    ) -> ValidationReport:
        """
        Check *weights* against the allocation constraints.

        Errors: sum outside 1 ± 0.001, negative weights.
        Warnings: positions above *max_position*, more than *max_positions*
        holdings at or above *min_position*, HHI above 0.25.
        Info: dust positions in (0, *min_position*).

        ``report.metrics`` holds ``sum``, ``max_weight`` (percent), ``hhi``
        and ``non_zero_positions``.
        """
        w = as_vector(weights)
        report = ValidationReport()

        total = float(w.sum())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            report.errors.append(ValidationIssue(
                SUM_CONSTRAINT, Severity.ERROR,
                f"Weights sum to {round_to(total * 100, 2)}% instead of 100%.",
                details={"sum": round_to(total, 6)},
            ))

        for i, value in enumerate(w):
            if value < 0:
                report.errors.append(ValidationIssue(
                    NEGATIVE_WEIGHT, Severity.ERROR,
                    f"Asset {i} has negative weight {round_to(value * 100, 2)}%.",
                    asset_index=i,
                    details={"weight": float(value)},
                ))
            if value > max_position:
                report.warnings.append(ValidationIssue(
                    MAX_POSITION_EXCEEDED, Severity.WARNING,
                    f"Asset {i} exceeds max position size "
                    f"({round_to(value * 100, 1)}% > {round_to(max_position * 100, 1)}%).",
                    asset_index=i,
                    details={
                        "weight": round_to(value * 100, 1),
                        "limit":  round_to(max_position * 100, 1),
                    },
                ))
            if 0 < value < min_position:
                report.warnings.append(ValidationIssue(
                    DUST_POSITION, Severity.INFO,
                    f"Asset {i} has a very small position ({round_to(value * 100, 2)}%).",
                    asset_index=i,
                    details={"weight": round_to(value * 100, 2)},
                ))

        non_zero = int(np.count_nonzero(w >= min_position))
        if non_zero > max_positions:
            report.warnings.append(ValidationIssue(
                TOO_MANY_POSITIONS, Severity.WARNING,
                f"{non_zero} positions exceeds the recommended maximum of {max_positions}.",
                details={"count": non_zero, "limit": max_positions},
            ))

        hhi = herfindahl_index(w)
        if require_diversification and hhi > HHI_CONCENTRATION_LIMIT:
            report.warnings.append(ValidationIssue(
                HIGH_CONCENTRATION, Severity.WARNING,
                f"Portfolio is highly concentrated (HHI: {round_to(hhi, 3)}).",
                details={"hhi": round_to(hhi, 3)},
            ))

        report.metrics = {
            "sum":                round_to(total, 6),
            "max_weight":         round_to(float(w.max()) * 100, 1),
            "hhi":                round_to(hhi, 4),
            "non_zero_positions": non_zero,
        }
        LOGGER.debug(
            "allocation validated: n=%s sum=%.6f errors=%s warnings=%s",
            len(w), total, len(report.errors), len(report.warnings),
        )
        return report

    # ------------------------------------------------------------------ #
    #  Repair
    # ------------------------------------------------------------------ #

    @staticmethod
    def enforce_constraints(
        weights: Sequence[float],
        max_position: float = MAX_POSITION,
        min_position: float = MIN_POSITION,
    ) -> dict:
        """
        Repair *weights* in three deterministic steps:

        1. clip every weight above *max_position* down to the cap;
        2. zero every weight in (0, *min_position*);
        3. renormalise the survivors to sum to 1.0.

        The result is rounded to 6 decimals and the largest weight absorbs
        the rounding residual, so ``sum(adjusted) == 1.0``.  Renormalising
        may lift a clipped weight back above the cap; callers that need a
        hard cap should re-validate.

        Returns
        -------
        dict
            ``adjusted``, ``changes`` (one ``{asset_index, original,
            adjusted, reason}`` per repair), ``original_sum``,
            ``adjusted_sum`` and ``dust_removal_skipped``.

        Raises
        ------
        InvalidInputError
            Empty/non-numeric input, any negative weight, or an all-zero
            vector.
        """
        w = as_vector(weights)
        if np.any(w < 0):
            idx = int(np.argmax(w < 0))
            raise InvalidInputError(
                f"Cannot enforce constraints on negative weight at asset {idx} ({w[idx]})."
            )

        adjusted = w.copy()
        changes: List[Dict] = []

        # --- Cap pass ----------------------------------------------------
        for i, value in enumerate(adjusted):
            if value > max_position:
                changes.append({
                    "asset_index": i,
                    "original":    round_to(value * 100, 1),
                    "adjusted":    round_to(max_position * 100, 1),
                    "reason":      REASON_MAX_POSITION,
                })
                adjusted[i] = max_position

        # --- Dust pass ---------------------------------------------------
        dust = (adjusted > 0) & (adjusted < min_position)
        dust_skipped = False
        if dust.any() and not np.any(adjusted[~dust] > 0):
            LOGGER.warning(
                "dust removal skipped: every position is below min_position=%s", min_position
            )
            dust_skipped = True
        else:
            for i in np.flatnonzero(dust):
                changes.append({
                    "asset_index": int(i),
                    "original":    round_to(adjusted[i] * 100, 2),
                    "adjusted":    0.0,
                    "reason":      REASON_DUST,
                })
                adjusted[i] = 0.0

        # --- Renormalise -------------------------------------------------
        total = float(adjusted.sum())
        if total == 0:
            raise InvalidInputError("Cannot enforce constraints on an all-zero weight vector.")
        adjusted = absorb_residual(adjusted / total, 1.0, WEIGHT_DECIMALS)

        return {
            "adjusted":             adjusted,
            "changes":              changes,
            "original_sum":         round_to(float(w.sum()), 6),
            "adjusted_sum":         round_to(sum(adjusted), 6),
            "dust_removal_skipped": dust_skipped,
        }

    # ------------------------------------------------------------------ #
    #  Implementation checks
    # ------------------------------------------------------------------ #

    @staticmethod
    def validate_position_sizing(
        weights: Sequence[float],
        prices: Sequence[float],
        account_value: float,
        drift_limit: float = POSITION_SIZING_DRIFT_LIMIT,
    ) -> dict:
        """
        Convert weights to whole-share orders for an account of
        *account_value* and report the drift that share rounding causes.

        Flags a ``rounding_drift`` issue when |actual − target| weight
        exceeds *drift_limit*, and ``unbuyable_position`` when a non-zero
        weight cannot buy a single share.
        """
        w = as_vector(weights)
        p = as_vector(prices, "prices")
        require_same_length(w, p, "prices")
        if np.any(p <= 0):
            raise InvalidInputError("Share prices must be positive.")
        account_value = as_float(account_value, "account_value")
        if account_value <= 0:
            raise InvalidInputError(f"account_value must be positive (got {account_value}).")

        target_dollars = account_value * w
        shares = np.floor(target_dollars / p)
        actual_dollars = shares * p
        actual_weights = actual_dollars / account_value
        drift = np.abs(actual_weights - w)

        positions = []
        issues: List[ValidationIssue] = []
        for i in range(len(w)):
            positions.append({
                "asset_index":    i,
                "target_weight":  round_to(w[i] * 100, 2),
                "target_dollars": round_to(target_dollars[i], 2),
                "price":          round_to(p[i], 2),
                "shares":         int(shares[i]),
                "actual_dollars": round_to(actual_dollars[i], 2),
                "actual_weight":  round_to(actual_weights[i] * 100, 2),
                "drift":          round_to(drift[i] * 100, 2),
            })
            if drift[i] > drift_limit:
                issues.append(ValidationIssue(
                    ROUNDING_DRIFT, Severity.WARNING,
                    f"Share rounding causes {round_to(drift[i] * 100, 2)}% drift from target.",
                    asset_index=i,
                    details={"drift": round_to(drift[i] * 100, 2)},
                ))
            if w[i] > 0 and shares[i] == 0:
                issues.append(ValidationIssue(
                    UNBUYABLE_POSITION, Severity.WARNING,
                    f"Position too small to buy even 1 share (need {round_to(p[i], 2)}).",
                    asset_index=i,
                    details={"price": round_to(p[i], 2)},
                ))

        invested = float(actual_dollars.sum())
        return {
            "positions":        positions,
            "issues":           issues,
            "total_invested":   round_to(invested, 2),
            "cash_remaining":   round_to(account_value - invested, 2),
            "utilization_rate": round_to(invested / account_value * 100, 2),
        }

    @staticmethod
    def check_rebalancing_feasibility(
        current_weights: Sequence[float],
        target_weights: Sequence[float],
        transaction_cost_bps: float = DEFAULT_TRANSACTION_COST_BPS,
    ) -> dict:
        """
        Estimate the cost of moving from *current_weights* to
        *target_weights*.

        ``turnover = Σ|target − current| / 2`` and
        ``cost = turnover × bps / 10 000`` (fraction of portfolio value).
        Advice: cost < 0.1% → rebalance now, < 0.5% → consider, else defer.
        """
        current = as_vector(current_weights, "current_weights")
        target = as_vector(target_weights, "target_weights")
        require_same_length(current, target, "target_weights")
        bps = as_float(transaction_cost_bps, "transaction_cost_bps")
        if bps < 0:
            raise InvalidInputError(f"transaction_cost_bps must be non-negative (got {bps}).")

        delta = target - current
        drifts = [
            {
                "asset_index":    i,
                "current_weight": round_to(current[i] * 100, 2),
                "target_weight":  round_to(target[i] * 100, 2),
                "drift":          round_to(delta[i] * 100, 2),
                "abs_drift":      round_to(abs(delta[i]) * 100, 2),
            }
            for i in range(len(current))
        ]
        drifts.sort(key=lambda d: d["abs_drift"], reverse=True)

        turnover = float(one_sided_turnover(current, target))
        cost = turnover * bps / 10_000

        if cost < REBALANCE_NOW_MAX_COST:
            advice = RebalanceAdvice.REBALANCE_NOW
        elif cost < REBALANCE_CONSIDER_MAX_COST:
            advice = RebalanceAdvice.CONSIDER
        else:
            advice = RebalanceAdvice.DEFER

        return {
            "drifts":                   drifts,
            "total_turnover":           round_to(float(np.abs(delta).sum()) * 100, 1),
            "one_sided_turnover":       round_to(turnover * 100, 1),
            "transaction_cost_percent": round_to(cost * 100, 2),
            "worth_rebalancing":        cost < REBALANCE_CONSIDER_MAX_COST,
            "advice":                   advice,
            "recommendation":           REBALANCE_MESSAGES[advice],
        }
