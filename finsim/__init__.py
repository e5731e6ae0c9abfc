"""Financial simulation and consistency engine."""

from finsim.allocation_validator import AllocationValidator
from finsim.consistency import ConsistencyRegistry, MetricRegistry
from finsim.drawdown import DrawdownDecomposer
from finsim.engine import FinancialEngine
from finsim.errors import InvalidGoalError, InvalidInputError
from finsim.goal_metrics import GoalMetricsCalculator
from finsim.guardrails import ValidationGuardrails
from finsim.models import (
    Company,
    DrawdownContribution,
    Goal,
    GoalMetrics,
    Holding,
    SimulationResult,
    Snapshot,
    ValidationIssue,
    ValidationReport,
)
from finsim.random_source import NormalSampler
from finsim.session_context import SessionContext
from finsim.simulator import StochasticSimulator

__all__ = [
    "AllocationValidator",
    "Company",
    "ConsistencyRegistry",
    "DrawdownContribution",
    "DrawdownDecomposer",
    "FinancialEngine",
    "Goal",
    "GoalMetrics",
    "GoalMetricsCalculator",
    "Holding",
    "InvalidGoalError",
    "InvalidInputError",
    "MetricRegistry",
    "NormalSampler",
    "SessionContext",
    "SimulationResult",
    "Snapshot",
    "StochasticSimulator",
    "ValidationGuardrails",
    "ValidationIssue",
    "ValidationReport",
]
