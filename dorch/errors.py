"""
Error classes for dorch.

These error types split into two families:
- Resolution errors: raised while selecting and ordering units, before any
  transaction is submitted. They abort the whole run with no side effects.
- Execution errors: raised while a single unit is running. The executor
  catches them at the unit boundary, marks the unit failed and halts the run.
  Records written by earlier units stay valid.

Retry classification follows the same split as the rest of the stack:
- TransientError: Safe to re-run (RPC hiccups, confirmation timeouts)
- PermanentError: Re-running will not help (reverts, bad definitions)

There is no automatic retry. Re-invoking the orchestrator is the retry
mechanism; units with a persisted record are skipped on the re-run.
"""

from typing import Optional, Sequence


class DorchError(Exception):
    """Base exception for dorch."""
    pass


class TransientError(DorchError):
    """
    Transient error - safe to re-run the deployment.

    Examples:
    - Node unreachable
    - Nonce too low after a concurrent submission
    - Confirmation not observed within the timeout
    """
    pass


class PermanentError(DorchError):
    """
    Permanent error - operator intervention required.

    Examples:
    - Transaction reverted
    - Unit definitions reference unknown units or form a cycle
    - Invalid configuration
    """
    pass


# =============================================================================
# Definition / resolution errors
# =============================================================================


class ResolutionError(PermanentError):
    """Raised when a run cannot be planned. Nothing has been submitted."""
    pass


class DuplicateNameError(ResolutionError):
    """Raised when a unit name is registered twice."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unit already registered: {name}")


class UnknownUnitError(ResolutionError):
    """Raised when a unit name is not registered."""

    def __init__(self, name: str, referenced_by: Optional[str] = None):
        self.name = name
        self.referenced_by = referenced_by
        if referenced_by:
            message = f"Unit '{referenced_by}' depends on unknown unit: {name}"
        else:
            message = f"Unknown unit: {name}"
        super().__init__(message)


class CyclicDependencyError(ResolutionError):
    """
    Raised when the dependency graph contains a cycle.

    Attributes:
        cycle: Unit names along the cycle, first name repeated at the end
               (e.g. ["A", "B", "A"]).
    """

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic dependency: {' -> '.join(self.cycle)}")


class EmptySelectionError(ResolutionError):
    """Raised when a selection request matches no units."""
    pass


class UnitValidationError(PermanentError):
    """Raised when a unit definition is malformed."""
    pass


class RecordExistsError(PermanentError):
    """Raised when writing a record over an existing one without replace."""
    pass


class ConfigError(PermanentError):
    """Configuration validation error."""
    pass


# =============================================================================
# Execution errors
# =============================================================================


class ExecutionError(DorchError):
    """
    Raised when a unit fails while running.

    Attributes:
        unit_name: The unit that failed (None until the executor attaches it)
        kind: Failure category surfaced in the run report
    """

    kind = "ExecutionError"

    def __init__(self, message: str, unit_name: Optional[str] = None, cause: Optional[Exception] = None):
        self.unit_name = unit_name
        self.cause = cause
        super().__init__(message)


class SubmissionError(ExecutionError, TransientError):
    """The chain client refused or failed to submit a transaction."""

    kind = "SubmissionError"


class ConfirmationTimeout(ExecutionError, TransientError):
    """The transaction was not confirmed within the configured timeout."""

    kind = "Timeout"


class RevertedError(ExecutionError, PermanentError):
    """The transaction was mined but reverted."""

    kind = "Reverted"
