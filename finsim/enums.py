from enum import Enum


class Severity(Enum):
    """How serious a validation issue is."""
    CRITICAL = "critical"   # blocks rendering
    ERROR = "error"
    HIGH = "high"
    MEDIUM = "medium"
    WARNING = "warning"
    INFO = "info"


class ConcentrationLevel(Enum):
    """Share of drawdown risk held by the top three contributors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RebalanceAdvice(Enum):
    """Outcome of a rebalancing cost check."""
    REBALANCE_NOW = "rebalance_now"
    CONSIDER = "consider"
    DEFER = "defer"


class RiskLevel(Enum):
    """System-wide volatility label."""
    LOW = "Low"
    MODERATE = "Moderate"
    ELEVATED = "Elevated"
    HIGH = "High"


class ConfidenceTier(Enum):
    """System-wide confidence label."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
