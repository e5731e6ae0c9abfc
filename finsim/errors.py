"""Exceptions raised by the engine.

Only malformed input is raised.  Constraint violations and consistency
warnings are returned as :class:`finsim.models.ValidationIssue` records.
"""


class InvalidInputError(ValueError):
    """Numeric input the engine cannot compute with."""


class InvalidGoalError(InvalidInputError):
    """A goal record with a missing, non-numeric or non-positive target."""
