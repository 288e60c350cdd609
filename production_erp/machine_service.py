"""Machine time-slot search.

A slot is placed on the machine calendar (weekly planning and public
holidays) so that the working time inside it equals the requested duration.
Unless concurrency is ignored, the slot is then checked against the operation
orders already planned on the same machine and moved after (closest search)
or before (furthest search) the conflicting booking until a free slot is
found.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import List, Optional

from .domain import (
    Machine,
    MachineTimeSlot,
    ManufOrder,
    ManufOrderStatus,
    OperationOrder,
)
from .exceptions import NoPeriodFoundError, SlotComputationError, TooManyIterationsError
from .logging_config import get_logger
from .planning import MachineCalendar, day_of_end
from .repository import InMemoryRepository, RecordNotFoundError

MAX_LOOP_CALL = 1000
MAX_RECURSIVE_CALL = 200

INACTIVE_MANUF_ORDER_STATUSES = frozenset(
    {ManufOrderStatus.CANCELED, ManufOrderStatus.FINISHED}
)

logger = get_logger("machine_service")


class MachineService:
    """Find available time slots on machines."""

    def __init__(
        self,
        order_repo: InMemoryRepository,
        work_center_repo: InMemoryRepository,
        weekly_planning_repo: InMemoryRepository,
        events_planning_repo: InMemoryRepository,
    ) -> None:
        self.orders = order_repo
        self.work_centers = work_center_repo
        self.weekly_plannings = weekly_planning_repo
        self.events_plannings = events_planning_repo

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_closest_available_time_slot_from(
        self,
        machine: Machine,
        start: datetime,
        end: datetime,
        operation_order: OperationOrder,
    ) -> MachineTimeSlot:
        return self._closest_slot(machine, start, end - start, operation_order, False)

    def get_closest_time_slot_from(
        self,
        machine: Machine,
        start: datetime,
        end: datetime,
        operation_order: OperationOrder,
    ) -> MachineTimeSlot:
        return self._closest_slot(machine, start, end - start, operation_order, True)

    def get_furthest_available_time_slot_from(
        self,
        machine: Machine,
        start: datetime,
        end: datetime,
        operation_order: OperationOrder,
    ) -> MachineTimeSlot:
        return self._furthest_slot(machine, end, end - start, operation_order, False)

    def get_furthest_time_slot_from(
        self,
        machine: Machine,
        start: datetime,
        end: datetime,
        operation_order: OperationOrder,
    ) -> MachineTimeSlot:
        return self._furthest_slot(machine, end, end - start, operation_order, True)

    def calendar_for(self, machine: Machine) -> MachineCalendar:
        weekly_planning = None
        if machine.weekly_planning_id:
            weekly_planning = self.weekly_plannings.get(machine.weekly_planning_id)
        events_planning = None
        if machine.public_holiday_events_planning_id:
            events_planning = self.events_plannings.get(
                machine.public_holiday_events_planning_id
            )
        return MachineCalendar.from_plannings(weekly_planning, events_planning)

    def time_before_next_operation(self, operation_order: OperationOrder) -> timedelta:
        if not operation_order.work_center_id:
            return timedelta(0)
        try:
            work_center = self.work_centers.get(operation_order.work_center_id)
        except RecordNotFoundError:
            return timedelta(0)
        return work_center.time_before_next_operation

    # ------------------------------------------------------------------
    # Closest slot
    # ------------------------------------------------------------------
    def _closest_slot(
        self,
        machine: Machine,
        start: datetime,
        duration: timedelta,
        operation_order: OperationOrder,
        ignore_concurrency: bool,
    ) -> MachineTimeSlot:
        calendar = self.calendar_for(machine)
        time_before_next = self.time_before_next_operation(operation_order)

        for attempt in range(MAX_RECURSIVE_CALL):
            slot = self._place_forward(calendar, machine, start, duration, operation_order)
            if ignore_concurrency:
                return slot
            concurrent = self._concurrent_operation_orders(
                machine, operation_order, slot, time_before_next, furthest=False
            )
            if not concurrent:
                return slot
            if time_before_next == timedelta(0) and duration == timedelta(0):
                raise SlotComputationError(operation_order.name)
            last = concurrent[0]
            logger.debug(
                "machine_slot_conflict",
                extra={
                    "machine_id": machine.id,
                    "operation_order_id": operation_order.id,
                    "conflicting_operation_order_id": last.id,
                    "attempt": attempt,
                },
            )
            start = last.planned_end + time_before_next

        raise TooManyIterationsError(
            "time_slot", MAX_RECURSIVE_CALL, operation_order.name
        )

    def _place_forward(
        self,
        calendar: MachineCalendar,
        machine: Machine,
        start: datetime,
        duration: timedelta,
        operation_order: OperationOrder,
    ) -> MachineTimeSlot:
        # Public holidays: try again the next day
        skipped = 0
        while calendar.is_holiday(start.date()):
            skipped += 1
            if skipped > len(calendar.holidays):
                raise NoPeriodFoundError(operation_order.name, machine.name)
            start = datetime.combine(start.date() + timedelta(days=1), time.min)

        planned_start = calendar.allowed_start_at(start)
        if planned_start is None:
            raise NoPeriodFoundError(operation_order.name, machine.name)
        planned_end = self._require(
            calendar.allowed_end_after(planned_start + duration), operation_order, machine
        )

        # Time the machine does not work inside the slot must be added at its end.
        remaining = timedelta(0)
        for _ in range(MAX_LOOP_CALL):
            void = calendar.void_duration_between(planned_start, planned_end)
            remaining = duration - (planned_end - planned_start - void)
            if remaining <= timedelta(0):
                return MachineTimeSlot(planned_start, planned_end)
            planned_end = self._require(
                calendar.allowed_end_after(planned_end + remaining),
                operation_order,
                machine,
            )

        raise TooManyIterationsError("end_date", MAX_LOOP_CALL, operation_order.name)

    # ------------------------------------------------------------------
    # Furthest slot
    # ------------------------------------------------------------------
    def _furthest_slot(
        self,
        machine: Machine,
        end: datetime,
        duration: timedelta,
        operation_order: OperationOrder,
        ignore_concurrency: bool,
    ) -> MachineTimeSlot:
        calendar = self.calendar_for(machine)
        time_before_next = self.time_before_next_operation(operation_order)

        for attempt in range(MAX_RECURSIVE_CALL):
            slot = self._place_backward(calendar, machine, end, duration, operation_order)
            if ignore_concurrency:
                return slot
            concurrent = self._concurrent_operation_orders(
                machine, operation_order, slot, time_before_next, furthest=True
            )
            if not concurrent:
                return slot
            if time_before_next == timedelta(0) and duration == timedelta(0):
                raise SlotComputationError(operation_order.name)
            first = concurrent[0]
            logger.debug(
                "machine_slot_conflict",
                extra={
                    "machine_id": machine.id,
                    "operation_order_id": operation_order.id,
                    "conflicting_operation_order_id": first.id,
                    "attempt": attempt,
                },
            )
            end = first.planned_start - time_before_next

        raise TooManyIterationsError(
            "time_slot", MAX_RECURSIVE_CALL, operation_order.name
        )

    def _place_backward(
        self,
        calendar: MachineCalendar,
        machine: Machine,
        end: datetime,
        duration: timedelta,
        operation_order: OperationOrder,
    ) -> MachineTimeSlot:
        # Public holidays: try again the previous day
        skipped = 0
        while calendar.is_holiday(day_of_end(end)):
            skipped += 1
            if skipped > len(calendar.holidays):
                raise NoPeriodFoundError(operation_order.name, machine.name)
            end = datetime.combine(day_of_end(end), time.min)

        planned_end = calendar.allowed_end_at(end)
        if planned_end is None:
            raise NoPeriodFoundError(operation_order.name, machine.name)
        planned_start = self._require(
            calendar.allowed_start_before(planned_end - duration), operation_order, machine
        )

        remaining = timedelta(0)
        for _ in range(MAX_LOOP_CALL):
            void = calendar.void_duration_between(planned_start, planned_end)
            remaining = duration - (planned_end - planned_start - void)
            if remaining <= timedelta(0):
                return MachineTimeSlot(planned_start, planned_end)
            planned_start = self._require(
                calendar.allowed_start_before(planned_start - remaining),
                operation_order,
                machine,
            )

        raise TooManyIterationsError("start_date", MAX_LOOP_CALL, operation_order.name)

    # ------------------------------------------------------------------
    # Concurrency
    # ------------------------------------------------------------------
    def _concurrent_operation_orders(
        self,
        machine: Machine,
        operation_order: OperationOrder,
        slot: MachineTimeSlot,
        time_before_next: timedelta,
        *,
        furthest: bool,
    ) -> List[OperationOrder]:
        """Operation orders booked on ``machine`` that overlap ``slot``.

        Closest search: latest end first. Furthest search: earliest start first.
        """

        start, end = slot.start, slot.end
        start_with_time = start - time_before_next
        end_with_time = end - time_before_next

        def overlaps(other: OperationOrder) -> bool:
            other_start, other_end = other.planned_start, other.planned_end
            if furthest:
                touches_end = other_start < end and other_end > end_with_time
            else:
                touches_end = other_start <= end and other_end > end_with_time
            return (
                (other_start <= start and other_end > start_with_time)
                or touches_end
                or (other_start >= start and other_end <= end_with_time)
            )

        def active_orders(order: ManufOrder) -> bool:
            return order.status not in INACTIVE_MANUF_ORDER_STATUSES

        concurrent = [
            other
            for order in self.orders.filter(active_orders)
            for other in order.operation_orders
            if other.machine_id == machine.id
            and other.id != operation_order.id
            and not other.outsourcing
            and other.is_planned
            and overlaps(other)
        ]
        if furthest:
            concurrent.sort(key=lambda other: other.planned_start)
        else:
            concurrent.sort(key=lambda other: other.planned_end, reverse=True)
        return concurrent

    @staticmethod
    def _require(
        moment: Optional[datetime], operation_order: OperationOrder, machine: Machine
    ) -> datetime:
        if moment is None:
            raise NoPeriodFoundError(operation_order.name, machine.name)
        return moment


__all__ = [
    "MachineService",
    "MAX_LOOP_CALL",
    "MAX_RECURSIVE_CALL",
    "INACTIVE_MANUF_ORDER_STATUSES",
]
