"""
finsim/consistency.py
---------------------
Reproducibility and cross-call consistency.

``ConsistencyRegistry`` (stateless)
    Fingerprints the rounded inputs of a calculation, re-derives portfolio
    return / risk from locked inputs, detects weight drift between two
    passes and repairs minor floating-point divergence.

``MetricRegistry`` (one per session)
    Remembers the first value computed for each named metric so the same
    figure is never shown with two different values in one session.
    Registration is a read-modify-write, so every key is guarded by its
    own lock.

``portfolio_data`` mappings use these keys (all optional except
``weights``)::

    weights          decimals, sum ≈ 1.0
    returns          expected returns per asset, annual %
    risks            volatilities per asset, annual %
    correlations     N×N correlation matrix
    portfolio_return, portfolio_risk, sharpe_ratio, risk_free_rate
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from finsim.config import (
    CONSISTENCY_TOLERANCE,
    CORRELATION_DECIMALS,
    DRIFT_RELATIVE_THRESHOLD,
    REGISTRY_TOLERANCE,
    RETURN_DECIMALS,
    RISK_DECIMALS,
    RISK_FREE_RATE,
    WEIGHT_DECIMALS,
    WEIGHT_SUM_TOLERANCE,
)
from finsim.constants import (
    ASSET_COUNT_CHANGED,
    CONFIDENCE_CONFLICT,
    RETURN_MISMATCH,
    RISK_LABEL_CONFLICT,
    RISK_MISMATCH,
    SHARPE_MISMATCH,
    WEIGHT_SUM_MISMATCH,
)
from finsim.enums import ConfidenceTier, RiskLevel, Severity
from finsim.financial_math import (
    absorb_residual,
    as_float,
    as_vector,
    is_numeric,
    normalize,
    portfolio_expected_return,
    portfolio_risk,
    require_same_length,
    round_to,
    sharpe_ratio,
    validate_correlation_matrix,
)
from finsim.models import Snapshot, ValidationIssue

LOGGER = logging.getLogger(__name__)

# Risk tolerance in validate_portfolio_consistency (percentage points).
_RISK_TOLERANCE = 0.1


def fingerprint(rounded_inputs: dict) -> str:
    """SHA-256 of the canonical JSON form of *rounded_inputs*."""
    payload = json.dumps(rounded_inputs, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


# ---------------------------------------------------------------------------
# ConsistencyRegistry
# ---------------------------------------------------------------------------

class ConsistencyRegistry:
    """
    Snapshot, verify and repair portfolio calculations.

    Usage::

        snap = ConsistencyRegistry.create_session_snapshot(data, "session-1")
        ...
        check = ConsistencyRegistry.verify_consistency(new_results, snap)
        check["consistent"]
    """

    # ------------------------------------------------------------------ #
    #  Snapshots
    # ------------------------------------------------------------------ #

    @staticmethod
    def create_session_snapshot(
        portfolio_data: Mapping,
        session_id: Optional[str] = None,
    ) -> Snapshot:
        """
        Round every input (weights 6 dp, returns / risks / correlations
        4 dp) and hash the result.

        The hash covers the rounded inputs only, never the session id or
        timestamp, so identical inputs always produce identical hashes.
        """
        rounded = ConsistencyRegistry._rounded_inputs(portfolio_data)
        snapshot = Snapshot(
            session_id=session_id or uuid.uuid4().hex,
            timestamp=_utc_now(),
            rounded_inputs=rounded,
            hash=fingerprint(rounded),
        )
        LOGGER.debug("snapshot created: session=%s hash=%s", snapshot.session_id, snapshot.hash[:12])
        return snapshot

    @staticmethod
    def verify_consistency(
        new_results: Mapping,
        snapshot: Snapshot,
        tolerance: float = CONSISTENCY_TOLERANCE,
    ) -> dict:
        """
        Re-derive portfolio return and risk from *snapshot*'s locked inputs
        and compare them with *new_results*.

        Issues:
          - ``weight_sum`` (high): locked weights no longer sum to 1 ± 0.001
          - ``return_mismatch`` / ``risk_mismatch`` (medium): the new
            figure differs from the recomputed one by more than *tolerance*
        """
        inputs = snapshot.rounded_inputs
        weights = np.asarray(inputs["weights"], dtype=float)
        issues: List[ValidationIssue] = []

        weight_sum = float(weights.sum())
        if abs(weight_sum - 1.0) > WEIGHT_SUM_TOLERANCE:
            issues.append(ValidationIssue(
                WEIGHT_SUM_MISMATCH, Severity.HIGH,
                f"Snapshot weights sum to {round_to(weight_sum, 6)}, not 1.0.",
                details={"sum": round_to(weight_sum, 6)},
            ))

        expected = ConsistencyRegistry._derived_metrics(inputs)

        for key, code, label in (
            ("portfolio_return", RETURN_MISMATCH, "return"),
            ("portfolio_risk", RISK_MISMATCH, "risk"),
        ):
            reference = expected.get(key)
            actual = new_results.get(key)
            if reference is None or actual is None:
                continue
            actual = as_float(actual, key)
            deviation = abs(reference - actual)
            if deviation > tolerance:
                issues.append(ValidationIssue(
                    code, Severity.MEDIUM,
                    f"Portfolio {label} {round_to(actual, 4)} differs from the "
                    f"snapshot value {round_to(reference, 4)}.",
                    details={
                        "expected":  round_to(reference, 4),
                        "actual":    round_to(actual, 4),
                        "deviation": round_to(deviation, 6),
                    },
                ))

        return {
            "consistent":    not issues,
            "issues":        issues,
            "expected":      {k: round_to(v, 4) for k, v in expected.items()},
            "snapshot_hash": snapshot.hash,
        }

    @staticmethod
    def detect_drift(
        original_snapshot: Snapshot,
        current_portfolio: Mapping,
        threshold: float = DRIFT_RELATIVE_THRESHOLD,
    ) -> dict:
        """
        Flag assets whose weight moved more than *threshold* relative to
        the snapshot weight.

        An asset that was at 0 and is now held is always flagged, with
        ``relative_change`` ``None``.  A change in the number of assets is
        reported as an ``asset_count_changed`` issue and only the common
        prefix is compared.
        """
        original = np.asarray(original_snapshot.rounded_inputs["weights"], dtype=float)
        current = as_vector(current_portfolio.get("weights"))

        issues: List[ValidationIssue] = []
        if len(current) != len(original):
            issues.append(ValidationIssue(
                ASSET_COUNT_CHANGED, Severity.MEDIUM,
                f"Asset count changed from {len(original)} to {len(current)}.",
                details={"original": len(original), "current": len(current)},
            ))

        drifted = []
        for i in range(min(len(original), len(current))):
            before, after = float(original[i]), float(current[i])
            if before == 0:
                if after > 0:
                    drifted.append({
                        "asset_index":     i,
                        "original_weight": before,
                        "current_weight":  round_to(after, WEIGHT_DECIMALS),
                        "relative_change": None,
                    })
                continue
            relative = abs(after - before) / abs(before)
            if relative > threshold:
                drifted.append({
                    "asset_index":     i,
                    "original_weight": before,
                    "current_weight":  round_to(after, WEIGHT_DECIMALS),
                    "relative_change": round_to(relative, 4),
                })

        current_hash = fingerprint(ConsistencyRegistry._rounded_inputs(current_portfolio))
        return {
            "has_drift":      bool(drifted or issues),
            "drifted_assets": drifted,
            "issues":         issues,
            "hash_changed":   current_hash != original_snapshot.hash,
        }

    # ------------------------------------------------------------------ #
    #  Repair / validation
    # ------------------------------------------------------------------ #

    @staticmethod
    def apply_consistency_adjustments(portfolio_data: Mapping) -> dict:
        """
        Return a copy of *portfolio_data* with weights renormalised to sum
        to exactly 1.0, derived metrics recomputed from them, and
        ``"_adjusted": True``.  The input is not modified.
        """
        adjusted = dict(portfolio_data)
        weights = absorb_residual(
            normalize(as_vector(portfolio_data.get("weights"))), 1.0, WEIGHT_DECIMALS
        )
        adjusted["weights"] = weights
        derived = ConsistencyRegistry._derived_metrics({**portfolio_data, "weights": weights})
        adjusted.update({k: round_to(v, 4) for k, v in derived.items()})
        adjusted["_adjusted"] = True
        return adjusted

    @staticmethod
    def validate_portfolio_consistency(portfolio_data: Mapping) -> dict:
        """
        Check weights, return, risk and Sharpe ratio against one another.

        Each validation holds ``valid``, ``expected``, ``actual`` and
        ``deviation``; ``corrected_values`` carries the recomputed figure
        wherever a check failed.
        """
        weights = as_vector(portfolio_data.get("weights"))
        total = float(weights.sum())
        weights_ok = abs(total - 1.0) <= WEIGHT_SUM_TOLERANCE
        corrected_weights = (
            [float(w) for w in weights] if weights_ok
            else absorb_residual(normalize(weights), 1.0, WEIGHT_DECIMALS)
        )
        validations = {
            "weights": {
                "valid":      weights_ok,
                "sum":        round_to(total, 6),
                "adjustment": corrected_weights,
            },
        }

        derived = ConsistencyRegistry._derived_metrics(portfolio_data)
        rf = as_float(portfolio_data.get("risk_free_rate", RISK_FREE_RATE), "risk_free_rate")
        stated_return = portfolio_data.get("portfolio_return")
        stated_risk = portfolio_data.get("portfolio_risk")

        validations["portfolio_return"] = ConsistencyRegistry._compare(
            derived.get("portfolio_return"), stated_return, CONSISTENCY_TOLERANCE, 2
        )
        validations["portfolio_risk"] = ConsistencyRegistry._compare(
            derived.get("portfolio_risk"), stated_risk, _RISK_TOLERANCE, 2
        )
        if stated_return is None or stated_risk is None or as_float(stated_risk, "portfolio_risk") == 0:
            expected_sharpe = None
        else:
            expected_sharpe = sharpe_ratio(
                as_float(stated_return, "portfolio_return"),
                as_float(stated_risk, "portfolio_risk"),
                rf,
            )
        validations["sharpe_ratio"] = ConsistencyRegistry._compare(
            expected_sharpe, portfolio_data.get("sharpe_ratio"), CONSISTENCY_TOLERANCE, 3
        )

        consistent = all(v["valid"] for v in validations.values())

        def corrected(name: str):
            check = validations[name]
            if not check["valid"] and check["expected"] is not None:
                return check["expected"]
            return portfolio_data.get(name)

        return {
            "consistent": consistent,
            "validations": validations,
            "summary": (
                "All portfolio metrics are internally consistent" if consistent
                else "Some portfolio metrics are inconsistent and have been corrected"
            ),
            "corrected_values": {
                "weights":          corrected_weights,
                "portfolio_return": corrected("portfolio_return"),
                "portfolio_risk":   corrected("portfolio_risk"),
                "sharpe_ratio":     corrected("sharpe_ratio"),
            },
            "issues": [
                ValidationIssue(code, Severity.MEDIUM, f"{name} is inconsistent")
                for name, code in (
                    ("weights", WEIGHT_SUM_MISMATCH),
                    ("portfolio_return", RETURN_MISMATCH),
                    ("portfolio_risk", RISK_MISMATCH),
                    ("sharpe_ratio", SHARPE_MISMATCH),
                )
                if not validations[name]["valid"]
            ],
        }

    @staticmethod
    def classify_risk_level(volatility: float) -> RiskLevel:
        """System-wide volatility label: < 12 Low, < 18 Moderate, < 25 Elevated, else High."""
        vol = as_float(volatility, "volatility")
        if vol < 12:
            return RiskLevel.LOW
        if vol < 18:
            return RiskLevel.MODERATE
        if vol < 25:
            return RiskLevel.ELEVATED
        return RiskLevel.HIGH

    @staticmethod
    def classify_confidence_tier(confidence) -> ConfidenceTier:
        """
        System-wide confidence label.

        Accepts a score in [0, 1] (>= 0.8 High, >= 0.5 Medium) or one of the
        labels ``"high"`` / ``"medium"``; anything else is Low.
        """
        label = confidence.strip().lower() if isinstance(confidence, str) else ""
        score = float(confidence) if is_numeric(confidence) else None
        if label == "high" or (score is not None and score >= 0.8):
            return ConfidenceTier.HIGH
        if label == "medium" or (score is not None and score >= 0.5):
            return ConfidenceTier.MEDIUM
        return ConfidenceTier.LOW

    @staticmethod
    def validate_cross_view_consistency(views: Sequence[Mapping]) -> dict:
        """
        Check that every view of one portfolio shows the same labels.

        Each view may carry ``portfolio_risk`` (annual %) and ``confidence``;
        missing values are skipped.  Two views whose risk classifies into
        different ``RiskLevel``s raise a high-severity
        ``risk_label_conflict``; differing confidence tiers a medium
        ``confidence_conflict``.

        Returns
        -------
        dict
            ``{is_consistent, issues, risk_levels, confidence_tiers}``; the
            label lists hold each distinct label once, in first-seen order.
        """
        risk_levels: List[RiskLevel] = []
        tiers: List[ConfidenceTier] = []
        for view in views:
            risk = view.get("portfolio_risk")
            if risk is not None:
                level = ConsistencyRegistry.classify_risk_level(risk)
                if level not in risk_levels:
                    risk_levels.append(level)
            confidence = view.get("confidence")
            if confidence is not None:
                tier = ConsistencyRegistry.classify_confidence_tier(confidence)
                if tier not in tiers:
                    tiers.append(tier)

        issues = []
        if len(risk_levels) > 1:
            issues.append(ValidationIssue(
                RISK_LABEL_CONFLICT, Severity.HIGH,
                "Risk level classified differently across views",
                details={"labels": [r.value for r in risk_levels]},
            ))
        if len(tiers) > 1:
            issues.append(ValidationIssue(
                CONFIDENCE_CONFLICT, Severity.MEDIUM,
                "Confidence tier inconsistent across views",
                details={"labels": [t.value for t in tiers]},
            ))
        if issues:
            LOGGER.warning(
                "label conflict across views: risk=%s confidence=%s",
                [r.value for r in risk_levels], [t.value for t in tiers],
            )
        return {
            "is_consistent":    not issues,
            "issues":           issues,
            "risk_levels":      risk_levels,
            "confidence_tiers": tiers,
        }

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _rounded_inputs(portfolio_data: Mapping) -> dict:
        weights = as_vector(portfolio_data.get("weights"))
        rounded = {"weights": [round_to(w, WEIGHT_DECIMALS) for w in weights]}

        if portfolio_data.get("returns") is not None:
            returns = as_vector(portfolio_data["returns"], "returns")
            require_same_length(weights, returns, "returns")
            rounded["returns"] = [round_to(r, RETURN_DECIMALS) for r in returns]

        if portfolio_data.get("risks") is not None:
            risks = as_vector(portfolio_data["risks"], "risks")
            require_same_length(weights, risks, "risks")
            rounded["risks"] = [round_to(r, RISK_DECIMALS) for r in risks]

        if portfolio_data.get("correlations") is not None:
            corr = validate_correlation_matrix(portfolio_data["correlations"], size=len(weights))
            rounded["correlations"] = [
                [round_to(c, CORRELATION_DECIMALS) for c in row] for row in corr
            ]

        if portfolio_data.get("risk_free_rate") is not None:
            rounded["risk_free_rate"] = round_to(
                as_float(portfolio_data["risk_free_rate"], "risk_free_rate"), RETURN_DECIMALS
            )
        return rounded

    @staticmethod
    def _derived_metrics(inputs: Mapping) -> Dict[str, float]:
        """Portfolio return / risk / Sharpe computable from *inputs*."""
        weights = as_vector(inputs.get("weights"))
        derived: Dict[str, float] = {}
        if inputs.get("returns") is not None:
            derived["portfolio_return"] = portfolio_expected_return(
                weights, as_vector(inputs["returns"], "returns")
            )
        if inputs.get("risks") is not None and inputs.get("correlations") is not None:
            risks = as_vector(inputs["risks"], "risks")
            require_same_length(weights, risks, "risks")
            corr = validate_correlation_matrix(inputs["correlations"], size=len(weights))
            derived["portfolio_risk"] = portfolio_risk(weights, risks, corr)
        if "portfolio_return" in derived and "portfolio_risk" in derived:
            rf = inputs.get("risk_free_rate")
            derived["sharpe_ratio"] = sharpe_ratio(
                derived["portfolio_return"],
                derived["portfolio_risk"],
                RISK_FREE_RATE if rf is None else as_float(rf, "risk_free_rate"),
            )
        return derived

    @staticmethod
    def _compare(expected: Optional[float], actual, tolerance: float, decimals: int) -> dict:
        if expected is None or actual is None:
            return {"valid": False, "expected": None, "actual": actual, "deviation": None}
        actual = as_float(actual, "metric")
        deviation = abs(expected - actual)
        return {
            "valid":     deviation <= tolerance,
            "expected":  round_to(expected, decimals),
            "actual":    round_to(actual, decimals),
            "deviation": round_to(deviation, 5),
        }


# ---------------------------------------------------------------------------
# MetricRegistry
# ---------------------------------------------------------------------------

class MetricRegistry:
    """
    Per-session memo of the first value computed for each metric.

    Keys are ``"<metric_type>_<symbol>"`` (``"risk_AAPL"``) or
    ``"<metric_type>_portfolio"`` when no symbol is given.
    """

    def __init__(self, session_id: Optional[str] = None, tolerance: float = REGISTRY_TOLERANCE):
        self.session_id = session_id or uuid.uuid4().hex
        self.tolerance = tolerance
        self._entries: Dict[str, dict] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @staticmethod
    def key_for(metric_type: str, symbol: Optional[str] = None) -> str:
        return f"{metric_type}_{symbol or 'portfolio'}"

    def register_metric(self, key: str, value: float, source: str = "calculated") -> None:
        """Store *value* under *key*, replacing any earlier entry."""
        value = as_float(value, key)
        with self._lock_for(key):
            self._entries[key] = {"value": value, "source": source, "timestamp": _utc_now()}

    def get_registered_metric(self, key: str) -> Optional[dict]:
        entry = self._entries.get(key)
        return dict(entry) if entry is not None else None

    def enforce_consistency(
        self,
        metric_type: str,
        raw_value: float,
        symbol: Optional[str] = None,
        source: str = "current",
    ) -> dict:
        """
        Return the canonical value for *metric_type*.

        The first call for a key registers *raw_value*.  Later values that
        differ from it by more than ``tolerance`` are replaced with the
        registered value and flagged ``was_adjusted``; values within
        tolerance pass through unchanged and leave the registry untouched.
        """
        raw_value = as_float(raw_value, metric_type)
        key = self.key_for(metric_type, symbol)

        with self._lock_for(key):
            existing = self._entries.get(key)
            if existing is None:
                self._entries[key] = {"value": raw_value, "source": source, "timestamp": _utc_now()}
                return {
                    "original": raw_value, "adjusted": raw_value,
                    "was_adjusted": False, "adjustment_reason": None,
                }
            if abs(existing["value"] - raw_value) <= self.tolerance:
                return {
                    "original": raw_value, "adjusted": raw_value,
                    "was_adjusted": False, "adjustment_reason": None,
                }
            canonical = existing["value"]
            reason = (
                f"Normalized to match {existing['source']} value "
                f"registered at {existing['timestamp']}"
            )

        LOGGER.info(
            "metric normalised: session=%s key=%s original=%s registered=%s",
            self.session_id, key, raw_value, canonical,
        )
        return {
            "original": raw_value, "adjusted": canonical,
            "was_adjusted": True, "adjustment_reason": reason,
        }

    def clear(self) -> None:
        with self._guard:
            self._entries.clear()
            self._locks.clear()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock
