"""
finsim/guardrails.py
--------------------
Pre-publication checks on a goal analysis.

Every check is independent and produces a ``ValidationIssue``.  Errors
with ``Severity.CRITICAL`` block rendering; warnings are informational.
Nothing here raises: a broken analysis is reported, never repaired.
"""

from __future__ import annotations

from typing import Any, Mapping

from finsim.constants import (
    ALLOCATION_MISMATCH,
    INVALID_ALLOCATION,
    INVALID_PORTFOLIO_VALUE,
    INVALID_PROGRESS,
    INVALID_TARGET,
    MISSING_GOAL,
    MISSING_INITIAL_INVESTMENT,
    MISSING_MONTHLY,
    OVER_TARGET,
    PROGRESS_MISMATCH,
)
from finsim.enums import Severity
from finsim.financial_math import is_numeric
from finsim.models import ValidationIssue, ValidationReport

# Recommendation allocation percentages may be off by this many points.
_ALLOCATION_SUM_TOLERANCE = 1.0


def _get(obj: Any, key: str, default=None):
    """Read *key* from a mapping or an attribute of a record."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


class ValidationGuardrails:
    """Sanity checks run on goal metrics before they reach the user."""

    @staticmethod
    def validate_goal_analysis(goal, metrics=None, recommendation=None) -> ValidationReport:
        """
        Run every goal / metrics / recommendation check.

        Parameters
        ----------
        goal:
            ``Goal`` or mapping.  ``None`` yields a single ``MISSING_GOAL``
            critical error.
        metrics:
            ``GoalMetrics`` or mapping with ``portfolio_value`` and
            ``progress_percent``.  Skipped when ``None``.
        recommendation:
            Mapping with ``initial_investment``, ``monthly_contribution`` and
            optionally ``sample_allocation.companies[].allocation_percentage``.
        """
        report = ValidationReport()

        if goal is None:
            report.errors.append(ValidationIssue(
                MISSING_GOAL, Severity.CRITICAL, "Goal is missing.",
            ))
            return report

        target = _get(goal, "target_amount")
        if not is_numeric(target) or target <= 0:
            report.errors.append(ValidationIssue(
                INVALID_TARGET, Severity.CRITICAL,
                "Target amount must be a positive number.",
                details={"expected": "number > 0", "actual": repr(target)},
            ))

        allocation = _get(goal, "current_allocation")
        if allocation is not None and not is_numeric(allocation):
            report.errors.append(ValidationIssue(
                INVALID_ALLOCATION, Severity.CRITICAL,
                "Current allocation must be a number.",
                details={"expected": "number", "actual": repr(allocation)},
            ))

        if metrics is not None:
            ValidationGuardrails._check_metrics(report, allocation, metrics)

        if recommendation is not None:
            ValidationGuardrails._check_recommendation(report, recommendation)

        return report

    @staticmethod
    def can_render_goal_analysis(goal, metrics=None, recommendation=None) -> dict:
        """``{"can_render": bool, "validation": ValidationReport}``"""
        report = ValidationGuardrails.validate_goal_analysis(goal, metrics, recommendation)
        return {"can_render": not report.has_critical_errors, "validation": report}

    @staticmethod
    def format_validation_error(report: ValidationReport) -> dict:
        """Condense *report* into a single message for the presentation layer."""
        if report.is_valid:
            return {
                "has_error": False,
                "message":   "Goal analysis passed validation",
                "type":      "success",
                "details":   [],
            }

        critical = [e.code for e in report.errors if e.severity is Severity.CRITICAL]
        if critical:
            message = "Critical validation errors: " + ", ".join(critical)
        else:
            message = "Validation errors: " + ", ".join(e.code for e in report.errors)

        return {
            "has_error": True,
            "message":   message,
            "type":      "error" if critical else "warning",
            "details":   [i.to_dict() for i in report.errors + report.warnings],
        }

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _check_metrics(report: ValidationReport, allocation, metrics) -> None:
        portfolio_value = _get(metrics, "portfolio_value")
        progress = _get(metrics, "progress_percent")

        if not is_numeric(portfolio_value):
            report.errors.append(ValidationIssue(
                INVALID_PORTFOLIO_VALUE, Severity.CRITICAL,
                "Metrics must include a numeric portfolio_value.",
            ))
        if not is_numeric(progress):
            report.errors.append(ValidationIssue(
                INVALID_PROGRESS, Severity.CRITICAL,
                "Metrics must include a numeric progress_percent.",
            ))
            return

        # Capital present but 0% progress: the known fragmentation defect.
        if is_numeric(allocation) and allocation > 0 and progress == 0:
            report.warnings.append(ValidationIssue(
                PROGRESS_MISMATCH, Severity.WARNING,
                "Initial capital exists but progress shows 0%.",
                details={"current_allocation": float(allocation)},
            ))

        if progress > 100:
            report.warnings.append(ValidationIssue(
                OVER_TARGET, Severity.INFO,
                f"Goal already exceeded by {progress - 100:.1f}%.",
            ))

    @staticmethod
    def _check_recommendation(report: ValidationReport, recommendation) -> None:
        if not isinstance(_get(recommendation, "initial_investment"), Mapping):
            report.warnings.append(ValidationIssue(
                MISSING_INITIAL_INVESTMENT, Severity.WARNING,
                "Recommendation is missing initial investment info.",
            ))
        if not isinstance(_get(recommendation, "monthly_contribution"), Mapping):
            report.warnings.append(ValidationIssue(
                MISSING_MONTHLY, Severity.WARNING,
                "Recommendation is missing monthly contribution info.",
            ))

        companies = _get(_get(recommendation, "sample_allocation"), "companies")
        if not companies:
            return
        total = 0.0
        for company in companies:
            pct = _get(company, "allocation_percentage")
            total += float(pct) if is_numeric(pct) else 0.0
        if abs(total - 100) > _ALLOCATION_SUM_TOLERANCE:
            report.warnings.append(ValidationIssue(
                ALLOCATION_MISMATCH, Severity.WARNING,
                f"Allocation percentages sum to {total:g}%, expected 100%.",
                details={"total": total},
            ))
