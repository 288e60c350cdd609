"""Typed exceptions raised by the production planning services.

Every exception carries a machine-readable ``code`` so that callers (the web
layer, batch scripts) can react on the type instead of parsing messages::

    ProductionError
    |
    +-- PlanningConfigurationError
    |   +-- NoPeriodFoundError
    |
    +-- PlanningInconsistencyError
    |   +-- TooManyIterationsError
    |   +-- SlotComputationError
    |
    +-- InvalidStatusTransitionError

Repository errors (missing or duplicate records) live in
:mod:`production_erp.repository`.
"""

from __future__ import annotations

from typing import Optional


class ProductionError(Exception):
    """Base class for production planning errors."""

    code: str = "PRODUCTION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PlanningConfigurationError(ProductionError):
    """The master data does not allow planning (calendar, work center...)."""

    code = "PLANNING_CONFIGURATION_ERROR"


class NoPeriodFoundError(PlanningConfigurationError):
    """No working period could be found on the machine calendar."""

    code = "NO_PERIOD_FOUND"

    def __init__(self, operation_order_name: str, machine_name: str = "") -> None:
        self.operation_order_name = operation_order_name
        self.machine_name = machine_name
        on_machine = f" on machine {machine_name!r}" if machine_name else ""
        super().__init__(
            f"No working period found{on_machine} to plan the operation "
            f"order {operation_order_name!r}"
        )


class PlanningInconsistencyError(ProductionError):
    """The slot search could not converge."""

    code = "PLANNING_INCONSISTENCY"


class TooManyIterationsError(PlanningInconsistencyError):
    """A bounded search loop hit its iteration limit.

    ``target`` is one of ``"end_date"``, ``"start_date"`` or ``"time_slot"``.
    """

    code = "TOO_MANY_ITERATIONS"

    def __init__(
        self, target: str, limit: int, operation_order_name: Optional[str] = None
    ) -> None:
        self.target = target
        self.limit = limit
        self.operation_order_name = operation_order_name
        subject = target.replace("_", " ")
        suffix = (
            f" for the operation order {operation_order_name!r}"
            if operation_order_name
            else ""
        )
        super().__init__(
            f"Too many iterations ({limit}) while computing the {subject}{suffix}"
        )


class SlotComputationError(PlanningInconsistencyError):
    """The next slot cannot be computed with the current configuration."""

    code = "CANT_COMPUTE_NEXT_SLOT"

    def __init__(self, operation_order_name: str) -> None:
        self.operation_order_name = operation_order_name
        super().__init__(
            f"Cannot compute the next time slot for the operation order "
            f"{operation_order_name!r}: both its duration and the time before "
            "the next operation are zero"
        )


class InvalidStatusTransitionError(ProductionError):
    code = "INVALID_STATUS_TRANSITION"


__all__ = [
    "ProductionError",
    "PlanningConfigurationError",
    "NoPeriodFoundError",
    "PlanningInconsistencyError",
    "TooManyIterationsError",
    "SlotComputationError",
    "InvalidStatusTransitionError",
]
