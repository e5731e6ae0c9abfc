"""
finsim/models.py
----------------
Plain records exchanged with the presentation layer.

Input records (``Goal``, ``Holding``, ``Company``) are deliberately loose:
they hold whatever the caller supplied so the validators can report
non-numeric values instead of failing on construction.
"""

from __future__ import annotations

from dataclasses import MISSING, asdict, dataclass, field, fields
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from finsim.enums import Severity
from finsim.errors import InvalidInputError


def _from_mapping(cls, data: Mapping):
    """Build *cls* from the keys of *data* it knows about."""
    known = {f.name for f in fields(cls)}
    missing = [
        f.name for f in fields(cls)
        if f.default is MISSING and f.default_factory is MISSING and f.name not in data
    ]
    if missing:
        raise InvalidInputError(
            f"{cls.__name__} is missing required field(s): {', '.join(missing)}"
        )
    return cls(**{k: v for k, v in data.items() if k in known})


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Goal:
    """
    A savings target; ``current_allocation`` is the initial capital.

    ``assigned_holdings`` names the symbols that fund this goal.  A goal
    with no assignments (or with ``is_linked`` set) counts every holding.
    """
    target_amount: Any = None
    current_allocation: Any = None
    target_date: Optional[Union[date, datetime, str]] = None
    assigned_holdings: Optional[Sequence[str]] = None
    is_linked: bool = False

    @classmethod
    def from_dict(cls, data: Mapping) -> "Goal":
        return _from_mapping(cls, data)


@dataclass(frozen=True)
class Holding:
    """A tracked position.  A missing or zero ``current_price`` falls back to ``average_cost``."""
    symbol: str
    quantity: Any
    average_cost: Any
    current_price: Any = None

    @classmethod
    def from_dict(cls, data: Mapping) -> "Holding":
        return _from_mapping(cls, data)


@dataclass(frozen=True)
class Company:
    """Market characteristics: ``expected_return`` and ``risk`` are annual %."""
    symbol: str
    expected_return: Optional[float] = None
    risk: Optional[float] = None
    beta: Optional[float] = None
    sector: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping) -> "Company":
        return _from_mapping(cls, data)


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GoalMetrics:
    """Goal progress.  Monetary fields are whole units."""
    initial_capital: int
    holdings_value: int
    portfolio_value: int
    target_amount: int
    progress_percent: float
    remaining_gap: int
    months_remaining: float
    required_monthly_to_close_gap: int
    target_date: Optional[str] = None
    breakdown: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SimulationResult:
    """Percentile statistics over an empirical distribution."""
    median: float
    p25: float
    p75: float
    mean: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DrawdownContribution:
    """One asset's share of portfolio drawdown."""
    asset_index: int
    weight: float                  # percent
    risk: float                    # percent
    beta: float
    marginal_contribution: float
    drawdown_contribution: float
    percent_of_drawdown: float = 0.0
    symbol: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Snapshot:
    """Reproducibility fingerprint of one calculation pass."""
    session_id: str
    timestamp: str
    rounded_inputs: Dict[str, Any]
    hash: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    severity: Severity
    message: str
    asset_index: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        out = asdict(self)
        out["severity"] = self.severity.value
        return out


@dataclass
class ValidationReport:
    """Errors block rendering; warnings are informational."""
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now().isoformat(timespec="seconds")
    )

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_critical_errors(self) -> bool:
        return any(e.severity is Severity.CRITICAL for e in self.errors)

    def codes(self) -> List[str]:
        """All issue codes, errors first."""
        return [i.code for i in self.errors] + [i.code for i in self.warnings]

    def to_dict(self) -> dict:
        return {
            "is_valid":  self.is_valid,
            "errors":    [e.to_dict() for e in self.errors],
            "warnings":  [w.to_dict() for w in self.warnings],
            "metrics":   dict(self.metrics),
            "timestamp": self.timestamp,
        }
