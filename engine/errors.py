"""
engine/errors.py
================

Exception taxonomy for the scoring core.

    ScoringError
    ├── PreconditionError     recoverable, state untouched ("bowler_required")
    │   └── NoHistoryError    undo with nothing to undo
    ├── ValidationError       bad external input (roster, ranges, types)
    └── InvariantViolation    core bug, fatal to the session

Every error carries a machine-readable ``code`` so the HTTP layer and the UI
can re-show the right dialog without parsing messages.
"""


class ScoringError(Exception):
    """Base class for every error raised by the scoring core."""

    code = "scoring_error"

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class PreconditionError(ScoringError):
    """The command is valid but cannot be applied in the current state."""

    code = "precondition_failed"


class NoHistoryError(PreconditionError):
    code = "no_history"

    def __init__(self, message="No actions to undo."):
        super().__init__(message)


class ValidationError(ScoringError):
    """The command carries input that can never be accepted as given."""

    code = "invalid_input"


class InvariantViolation(ScoringError):
    """Internal state is inconsistent. Indicates a bug in the core."""

    code = "invariant_violation"
