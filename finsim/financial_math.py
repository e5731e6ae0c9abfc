"""
finsim/financial_math.py
------------------------
Shared portfolio mathematics.

Conventions:
  - Returns, risks and drawdowns are annual **percent** (8.0 == 8%).
  - Weights are decimals that should sum to 1.0.
  - Portfolio risk uses the full covariance form  σp² = wᵀ Σ w  with
    Σᵢⱼ = σᵢ σⱼ ρᵢⱼ, so it is expressed in percent as well.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import List, Optional, Sequence

import numpy as np

from finsim.config import (
    BETA_CORRELATION_ADJUSTMENT,
    CROSS_SECTOR_CORRELATION,
    MAX_ESTIMATED_CORRELATION,
    RISK_FREE_RATE,
    SAME_SECTOR_CORRELATION,
)
from finsim.errors import InvalidInputError
from finsim.models import SimulationResult


# ---------------------------------------------------------------------------
# Numeric hygiene
# ---------------------------------------------------------------------------

def is_numeric(value) -> bool:
    """True for finite ints, floats and Decimals (``bool`` is not a number here)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal, np.integer, np.floating)):
        return math.isfinite(float(value))
    return False


def as_float(value, name: str) -> float:
    """Return *value* as a float or raise :class:`InvalidInputError`."""
    if not is_numeric(value):
        raise InvalidInputError(f"{name} must be a finite number (got {value!r}).")
    return float(value)


def round_to(value: float, decimals: int = 2) -> float:
    """
    Round half up, e.g. ``round_to(2.5, 0) == 3.0``.

    Python's built-in ``round`` uses banker's rounding, which would make
    displayed figures differ from the documented half-up convention.
    """
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def round_whole(value: float) -> int:
    """Half-up rounding to a whole monetary unit."""
    return int(round_to(value, 0))


def as_vector(values: Sequence, name: str = "weights") -> np.ndarray:
    """Validate a non-empty 1-D sequence of finite numbers."""
    if values is None or len(values) == 0:
        raise InvalidInputError(f"{name} must contain at least one value.")
    for i, v in enumerate(values):
        if not is_numeric(v):
            raise InvalidInputError(f"{name}[{i}] must be a finite number (got {v!r}).")
    return np.asarray([float(v) for v in values], dtype=float)


def require_same_length(reference: Sequence, other: Sequence, name: str) -> None:
    if len(other) != len(reference):
        raise InvalidInputError(
            f"{name} has {len(other)} entries but {len(reference)} were expected."
        )


def normalize(values: Sequence[float]) -> np.ndarray:
    """Scale *values* so they sum to 1.0."""
    arr = np.asarray(values, dtype=float)
    total = float(arr.sum())
    if total == 0:
        raise InvalidInputError("Cannot normalise a vector that sums to zero.")
    return arr / total


def absorb_residual(values: Sequence[float], target: float, decimals: int) -> List[float]:
    """
    Round every entry to *decimals* places; the largest entry absorbs the
    rounding residual so the rounded list sums to *target*.
    """
    rounded = [round_to(float(v), decimals) for v in values]
    if not rounded:
        return rounded
    largest = max(range(len(rounded)), key=lambda i: abs(rounded[i]))
    rounded[largest] = round_to(target - (sum(rounded) - rounded[largest]), decimals)
    return rounded


# ---------------------------------------------------------------------------
# Portfolio statistics
# ---------------------------------------------------------------------------

def portfolio_expected_return(weights: Sequence[float], expected_returns: Sequence[float]) -> float:
    """E[Rp] = Σ wᵢ · E[Rᵢ]"""
    w = np.asarray(weights, dtype=float)
    r = np.asarray(expected_returns, dtype=float)
    if w.shape != r.shape:
        raise InvalidInputError("Weights and returns must have the same length.")
    return float(w @ r)


def covariance_matrix(risks: Sequence[float], correlation: np.ndarray) -> np.ndarray:
    """Σ = diag(σ) · ρ · diag(σ)"""
    sigma = np.asarray(risks, dtype=float)
    return np.outer(sigma, sigma) * np.asarray(correlation, dtype=float)


def portfolio_risk(
    weights: Sequence[float],
    risks: Sequence[float],
    correlation: np.ndarray,
) -> float:
    """σp = √(wᵀ Σ w), floored at zero against tiny negative round-off."""
    w = np.asarray(weights, dtype=float)
    variance = float(w @ covariance_matrix(risks, correlation) @ w)
    return math.sqrt(max(0.0, variance))


def sharpe_ratio(
    portfolio_return: float,
    portfolio_risk_pct: float,
    risk_free_rate: float = RISK_FREE_RATE,
) -> float:
    """(Rp − Rf) / σp; 0.0 when σp is effectively zero."""
    if abs(portfolio_risk_pct) < 1e-10:
        return 0.0
    return (portfolio_return - risk_free_rate) / portfolio_risk_pct


def herfindahl_index(weights: Sequence[float]) -> float:
    """HHI = Σ wᵢ²"""
    w = np.asarray(weights, dtype=float)
    return float(np.sum(w * w))


def one_sided_turnover(current: np.ndarray, target: np.ndarray) -> np.ndarray:
    """Σ|target − current| / 2 along the last axis."""
    return np.abs(np.asarray(target) - np.asarray(current)).sum(axis=-1) / 2.0


def percentile_stats(values: Sequence[float], decimals: int = 2) -> SimulationResult:
    """
    Median / quartiles / mean of an empirical distribution.

    The values are sorted first; cut points are taken at index
    ``floor(n × q)`` of the 0-based sorted array.
    """
    arr = np.sort(np.asarray(values, dtype=float))
    n = len(arr)
    if n == 0:
        return SimulationResult(median=0.0, p25=0.0, p75=0.0, mean=0.0)
    return SimulationResult(
        median=round_to(float(arr[int(n * 0.50)]), decimals),
        p25=round_to(float(arr[int(n * 0.25)]), decimals),
        p75=round_to(float(arr[int(n * 0.75)]), decimals),
        mean=round_to(float(arr.mean()), decimals),
    )


# ---------------------------------------------------------------------------
# Correlation matrices
# ---------------------------------------------------------------------------

def validate_correlation_matrix(matrix, size: Optional[int] = None) -> np.ndarray:
    """
    Check that *matrix* is a square, symmetric correlation matrix with a
    unit diagonal and entries in [-1, 1].

    Raises
    ------
    InvalidInputError
        On any structural violation.
    """
    try:
        arr = np.asarray(matrix, dtype=float)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"Correlation matrix is not numeric: {exc}") from exc

    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise InvalidInputError(f"Correlation matrix must be square N×N (got shape {arr.shape}).")
    if size is not None and arr.shape[0] != size:
        raise InvalidInputError(
            f"Correlation matrix has {arr.shape[0]} rows but {size} assets were provided."
        )
    if not np.all(np.isfinite(arr)):
        raise InvalidInputError("Correlation matrix contains non-finite entries.")
    if not np.allclose(arr, arr.T, atol=1e-9):
        raise InvalidInputError("Correlation matrix must be symmetric.")
    if not np.allclose(np.diag(arr), 1.0, atol=1e-9):
        raise InvalidInputError("Correlation matrix diagonal must be 1.0.")
    if np.any(arr < -1.0 - 1e-9) or np.any(arr > 1.0 + 1e-9):
        raise InvalidInputError("Correlation entries must lie in [-1, 1].")
    return arr


def estimate_correlation_matrix(companies: Sequence) -> np.ndarray:
    """
    Sector / beta heuristic correlation estimate.

    Same sector → 0.7, different sector → 0.4, plus 0.05 × (|β₁−1| + |β₂−1|),
    capped at 0.95.  Missing sectors are treated as ``"Unknown"`` and
    missing betas as 1.0.
    """
    n = len(companies)
    matrix = np.eye(n)
    for i in range(n):
        for j in range(i + 1, n):
            a, b = companies[i], companies[j]
            base = (
                SAME_SECTOR_CORRELATION
                if (a.sector or "Unknown") == (b.sector or "Unknown")
                else CROSS_SECTOR_CORRELATION
            )
            beta_a = a.beta if a.beta is not None else 1.0
            beta_b = b.beta if b.beta is not None else 1.0
            adjustment = (abs(beta_a - 1.0) + abs(beta_b - 1.0)) * BETA_CORRELATION_ADJUSTMENT
            matrix[i, j] = matrix[j, i] = min(MAX_ESTIMATED_CORRELATION, base + adjustment)
    return matrix
