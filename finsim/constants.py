"""
finsim/constants.py
-------------------
Labels and issue codes shared across modules.

Placing these here keeps the validators, the simulator and the engine
facade aligned on a single source of truth without creating circular
imports.
"""

from __future__ import annotations

from finsim.enums import RebalanceAdvice


# ---------------------------------------------------------------------------
# Goal guardrail codes
# ---------------------------------------------------------------------------

MISSING_GOAL = "MISSING_GOAL"
INVALID_TARGET = "INVALID_TARGET"
INVALID_ALLOCATION = "INVALID_ALLOCATION"
INVALID_PORTFOLIO_VALUE = "INVALID_PORTFOLIO_VALUE"
INVALID_PROGRESS = "INVALID_PROGRESS"
PROGRESS_MISMATCH = "PROGRESS_MISMATCH"
OVER_TARGET = "OVER_TARGET"
MISSING_INITIAL_INVESTMENT = "MISSING_INITIAL_INVESTMENT"
MISSING_MONTHLY = "MISSING_MONTHLY"
ALLOCATION_MISMATCH = "ALLOCATION_MISMATCH"


# ---------------------------------------------------------------------------
# Allocation constraint codes
# ---------------------------------------------------------------------------

SUM_CONSTRAINT = "sum_constraint"
NEGATIVE_WEIGHT = "negative_weight"
MAX_POSITION_EXCEEDED = "max_position"
DUST_POSITION = "dust_position"
TOO_MANY_POSITIONS = "too_many_positions"
HIGH_CONCENTRATION = "high_concentration"
ROUNDING_DRIFT = "rounding_drift"
UNBUYABLE_POSITION = "unbuyable_position"

# Reasons recorded by AllocationValidator.enforce_constraints()
REASON_MAX_POSITION = "max_position_exceeded"
REASON_DUST = "dust_removed"


# ---------------------------------------------------------------------------
# Consistency codes
# ---------------------------------------------------------------------------

WEIGHT_SUM_MISMATCH = "weight_sum"
RETURN_MISMATCH = "return_mismatch"
RISK_MISMATCH = "risk_mismatch"
SHARPE_MISMATCH = "sharpe_mismatch"
ASSET_COUNT_CHANGED = "asset_count_changed"
RISK_LABEL_CONFLICT = "risk_label_conflict"
CONFIDENCE_CONFLICT = "confidence_conflict"


# ---------------------------------------------------------------------------
# Rebalancing recommendations
# ---------------------------------------------------------------------------

REBALANCE_MESSAGES: dict = {
    RebalanceAdvice.REBALANCE_NOW: "Minimal cost, rebalance now",
    RebalanceAdvice.CONSIDER:      "Reasonable cost, consider rebalancing",
    RebalanceAdvice.DEFER:         "High cost, defer rebalancing unless critical",
}


# ---------------------------------------------------------------------------
# Simulation strategy labels
# ---------------------------------------------------------------------------

STRATEGY_LABELS: dict = {
    "no_rebalance": "Buy & Hold (No Rebalancing)",
    "monthly":      "Monthly Rebalancing",
    "yearly":       "Annual Rebalancing",
}

REBALANCES_PER_YEAR: dict = {
    "no_rebalance": 0,
    "monthly":      12,
    "yearly":       1,
}
