"""Exception hierarchy for machinist.

All machinist-specific exceptions inherit from MachinistError. Callers
driving the actuator from a work queue distinguish two kinds:

- ``RequeueAfterError``: routine "not yet" signal carrying a delay.
- everything else: terminal for the current invocation.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager


class MachinistError(Exception):
    """Base exception for all machinist errors."""


class ConfigurationError(MachinistError):
    """Raised for invalid configuration or a missing precondition."""


class RequeueAfterError(MachinistError):
    """Raised when reconciliation must be rescheduled after a delay."""

    def __init__(self, requeue_after: float, reason: str = "") -> None:
        self.requeue_after = requeue_after
        self.reason = reason
        message = f"requeue in {requeue_after:g}s"
        super().__init__(f"{message}: {reason}" if reason else message)


class ReconcileTimeoutError(RequeueAfterError):
    """Raised when a verb exceeds its deadline. Retryable."""


class ImmutableFieldError(MachinistError):
    """Raised when an update attempts to change create-time-only fields."""

    def __init__(self, machine: str, violations: Sequence[str]) -> None:
        self.machine = machine
        self.violations = tuple(violations)
        joined = "; ".join(self.violations)
        super().__init__(f"found attempt to change immutable state for machine {machine!r}: {joined}")


class ProviderError(MachinistError):
    """Raised when a collaborator (cloud API, token issuer, store) fails."""

    def __init__(self, operation: str, target: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.target = target
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"failed to {operation} for {target}{detail}")


class InstanceNotFoundError(MachinistError):
    """Raised when an operation requires an instance that does not exist."""

    def __init__(self, machine: str, instance_id: str | None) -> None:
        self.machine = machine
        self.instance_id = instance_id
        super().__init__(f"no instance found for machine {machine!r} (instance id: {instance_id or 'unset'})")


class InstanceIdConflictError(MachinistError):
    """Raised when a machine would be relinked to a different instance."""

    def __init__(self, recorded: str, found: str) -> None:
        self.recorded = recorded
        self.found = found
        super().__init__(f"machine is linked to instance {recorded}, refusing to relink to {found}")


@contextmanager
def provider_call(operation: str, target: str) -> Iterator[None]:
    """Wrap collaborator failures in ProviderError.

    machinist's own errors and timeouts pass through untouched so requeue
    signals keep their meaning.
    """
    try:
        yield
    except (MachinistError, TimeoutError):
        raise
    except Exception as e:
        raise ProviderError(operation, target, e) from e
