"""
finsim/config.py
----------------
Shared financial configuration constants.

Keeping these separate from finsim/constants.py (which holds labels and
issue codes) ensures a clean boundary: this file owns tunable financial
parameters that are independent of reporting.  Every public routine accepts
keyword overrides for the values it reads from here.
"""

# ---------------------------------------------------------------------------
# Risk-free rate and trading costs
# ---------------------------------------------------------------------------
# Annual risk-free rate (percent) used as the Sharpe Ratio hurdle.
# Default: 4.5% — 3-month US T-Bill yield.

RISK_FREE_RATE: float = 4.5

# Cost charged on one-sided turnover at every rebalance event, in basis points.
DEFAULT_TRANSACTION_COST_BPS: float = 5.0

# ---------------------------------------------------------------------------
# Monte Carlo path counts
# ---------------------------------------------------------------------------
# Callers with a wall-clock budget pass a smaller ``simulations=`` instead.

DRIFT_SIMULATIONS: int = 2_000
REBALANCING_SIMULATIONS: int = 5_000
DCA_SIMULATIONS: int = 5_000
PANIC_SIMULATIONS: int = 3_000
THRESHOLD_SIMULATIONS: int = 1_000
GOAL_PROBABILITY_SIMULATIONS: int = 15_000

# Horizon used when searching for the optimal drift threshold (10 years).
THRESHOLD_HORIZON_MONTHS: int = 120

# Candidate drift thresholds, percent of target weight.
CANDIDATE_THRESHOLDS: tuple = (5, 10, 15, 20, 25)

# Annualised volatility (percent) assumed when a company carries none.
DEFAULT_ASSET_RISK: float = 20.0

# Simulations renormalise (with a logged warning) weight vectors whose sum
# is further than this from 1.0.
SIMULATION_WEIGHT_TOLERANCE: float = 0.01

# ---------------------------------------------------------------------------
# Behavioural (panic-selling) model
# ---------------------------------------------------------------------------

PANIC_TRIGGER_DRAWDOWN: float = 0.20   # exit after a 20% fall from the start
PANIC_CASH_MONTHS: int = 6             # months spent in cash before re-entry

# ---------------------------------------------------------------------------
# Allocation constraints
# ---------------------------------------------------------------------------

WEIGHT_SUM_TOLERANCE: float = 0.001
MAX_POSITION: float = 0.40           # 40% cap on any single asset
MIN_POSITION: float = 0.01           # below 1% is a dust position
MAX_POSITIONS: int = 50
HHI_CONCENTRATION_LIMIT: float = 0.25

# Rebalancing cost cut-offs (fraction of portfolio value).
REBALANCE_NOW_MAX_COST: float = 0.001     # < 0.1% → rebalance now
REBALANCE_CONSIDER_MAX_COST: float = 0.005  # < 0.5% → consider

# A share-rounding drift above this (fraction) is reported.
POSITION_SIZING_DRIFT_LIMIT: float = 0.01

# ---------------------------------------------------------------------------
# Correlation heuristic (sector / beta)
# ---------------------------------------------------------------------------
# Same sector → 0.7, different sector → 0.4, plus 0.05 per unit of beta
# distance from 1.0 across both assets, capped at 0.95.

SAME_SECTOR_CORRELATION: float = 0.70
CROSS_SECTOR_CORRELATION: float = 0.40
BETA_CORRELATION_ADJUSTMENT: float = 0.05
MAX_ESTIMATED_CORRELATION: float = 0.95

# ---------------------------------------------------------------------------
# Drawdown analysis
# ---------------------------------------------------------------------------

TOP_CONTRIBUTOR_THRESHOLD: float = 10.0   # percent of total drawdown
WORST_CASE_DRAWDOWN_MULTIPLIER: float = 1.5
RECOVERY_VOLATILITY_PENALTY: float = 0.3
PESSIMISTIC_RECOVERY_MULTIPLIER: float = 1.5
HIGH_TAIL_CONCENTRATION: float = 70.0
MEDIUM_TAIL_CONCENTRATION: float = 50.0
MIN_HISTORICAL_OBSERVATIONS: int = 12
DRAWDOWN_FLOOR: float = -85.0

# ---------------------------------------------------------------------------
# Goal calculations
# ---------------------------------------------------------------------------

AVG_DAYS_PER_MONTH: float = 30.4375
MAX_PROJECTION_MONTHS: int = 480          # 40 years

# ---------------------------------------------------------------------------
# Consistency and reproducibility
# ---------------------------------------------------------------------------

WEIGHT_DECIMALS: int = 6
RETURN_DECIMALS: int = 4
RISK_DECIMALS: int = 4
CORRELATION_DECIMALS: int = 4

CONSISTENCY_TOLERANCE: float = 0.01
REGISTRY_TOLERANCE: float = 0.01
DRIFT_RELATIVE_THRESHOLD: float = 0.05

# Snapshots kept per session; older ones are discarded.
SNAPSHOT_HISTORY: int = 50

