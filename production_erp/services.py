"""Service layer that implements core ERP logic."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from itertools import groupby
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from .config import DEFAULT_SHIFT_START, PlanningOptions
from .domain import (
    Customer,
    DayPlanning,
    EventsPlanning,
    EventsPlanningLine,
    Machine,
    MachineTimeSlot,
    ManufacturingProcess,
    ManufOrder,
    ManufOrderStatus,
    OperationOrder,
    OperationOrderStatus,
    OrderPriority,
    PlanningStrategy,
    TimeTrackingEntry,
    WeeklyPlanning,
    WorkCenter,
)
from .exceptions import InvalidStatusTransitionError
from .logging_config import get_logger
from .machine_service import INACTIVE_MANUF_ORDER_STATUSES, MachineService
from .planning import MachineCalendar
from .repository import InMemoryRepository, RecordNotFoundError

logger = get_logger("services")

PLANNABLE_STATUSES = frozenset({ManufOrderStatus.DRAFT, ManufOrderStatus.PLANNED})
CLOSED_OPERATION_STATUSES = frozenset(
    {OperationOrderStatus.FINISHED, OperationOrderStatus.CANCELED}
)
PlanSnapshot = Tuple[
    ManufOrderStatus,
    Optional[datetime],
    Optional[datetime],
    List[Tuple[OperationOrder, OperationOrderStatus, Optional[datetime], Optional[datetime]]],
]


@dataclass(slots=True)
class ScheduledOperation:
    """Represents a single scheduled execution of an operation order."""

    manuf_order_id: str
    operation_order_id: str
    machine_id: Optional[str]
    start: datetime
    end: datetime
    order_priority: OrderPriority = OrderPriority.NORMAL


@dataclass(slots=True)
class PlanningSummary:
    """Aggregate result returned after planning a manufacturing order."""

    manuf_order_id: str
    strategy: PlanningStrategy
    scheduled_operations: List[ScheduledOperation]
    planned_start: Optional[datetime]
    planned_end: Optional[datetime]
    due_date: date

    @property
    def is_late(self) -> bool:
        return self.planned_end is not None and self.planned_end.date() > self.due_date


@dataclass(slots=True)
class MachineLoad:
    """Booked versus available hours of a machine inside a window."""

    machine_id: str
    start: datetime
    end: datetime
    booked_hours: float
    available_hours: float

    @property
    def utilization(self) -> float:
        if self.available_hours <= 0:
            return 0.0
        return self.booked_hours / self.available_hours


def _hours(duration: timedelta) -> float:
    return duration.total_seconds() / 3600


def build_day_plannings(
    weekdays: Iterable[int],
    morning: Optional[Tuple[time, time]] = None,
    afternoon: Optional[Tuple[time, time]] = None,
) -> List[DayPlanning]:
    """Create identical day plannings for the given weekdays."""

    morning_from, morning_to = morning or (None, None)
    afternoon_from, afternoon_to = afternoon or (None, None)
    return [
        DayPlanning(
            weekday=weekday,
            morning_from=morning_from,
            morning_to=morning_to,
            afternoon_from=afternoon_from,
            afternoon_to=afternoon_to,
        )
        for weekday in sorted(set(weekdays))
    ]


class ERPService:
    """Facade that exposes ERP use-cases to clients."""

    def __init__(
        self,
        customer_repo: Optional[InMemoryRepository[Customer]] = None,
        machine_repo: Optional[InMemoryRepository[Machine]] = None,
        work_center_repo: Optional[InMemoryRepository[WorkCenter]] = None,
        weekly_planning_repo: Optional[InMemoryRepository[WeeklyPlanning]] = None,
        events_planning_repo: Optional[InMemoryRepository[EventsPlanning]] = None,
        manuf_order_repo: Optional[InMemoryRepository[ManufOrder]] = None,
        time_tracking_repo: Optional[InMemoryRepository[TimeTrackingEntry]] = None,
        *,
        planning_options: Optional[PlanningOptions] = None,
    ) -> None:
        self.customers = customer_repo if customer_repo is not None else InMemoryRepository()
        self.machines = machine_repo if machine_repo is not None else InMemoryRepository()
        self.work_centers = (
            work_center_repo if work_center_repo is not None else InMemoryRepository()
        )
        self.weekly_plannings = (
            weekly_planning_repo
            if weekly_planning_repo is not None
            else InMemoryRepository()
        )
        self.events_plannings = (
            events_planning_repo
            if events_planning_repo is not None
            else InMemoryRepository()
        )
        self.manuf_orders = (
            manuf_order_repo if manuf_order_repo is not None else InMemoryRepository()
        )
        self.time_tracking = (
            time_tracking_repo if time_tracking_repo is not None else InMemoryRepository()
        )
        self.planning_options = planning_options or PlanningOptions()
        self.machine_service = MachineService(
            self.manuf_orders,
            self.work_centers,
            self.weekly_plannings,
            self.events_plannings,
        )

    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------
    def create_customer(
        self,
        name: str,
        address: str,
        contact_person: str,
        *,
        contact_email: str = "",
        contact_phone: str = "",
        industry: str = "",
    ) -> Customer:
        customer = Customer(
            id=str(uuid4()),
            name=name,
            address=address,
            contact_person=contact_person,
            contact_email=contact_email,
            contact_phone=contact_phone,
            industry=industry,
        )
        self.customers.add(customer.id, customer)
        return customer

    def register_machine(
        self,
        name: str,
        processes: Sequence[ManufacturingProcess],
        *,
        weekly_planning_id: Optional[str] = None,
        public_holiday_planning_id: Optional[str] = None,
        location: str = "",
        manufacturer: str = "",
        notes: str = "",
    ) -> Machine:
        if not processes:
            raise ValueError("A machine must support at least one manufacturing process")
        if weekly_planning_id is not None and weekly_planning_id not in self.weekly_plannings:
            raise RecordNotFoundError(
                f"Weekly planning {weekly_planning_id!r} does not exist"
            )
        if (
            public_holiday_planning_id is not None
            and public_holiday_planning_id not in self.events_plannings
        ):
            raise RecordNotFoundError(
                f"Public holiday planning {public_holiday_planning_id!r} does not exist"
            )
        machine = Machine(
            id=str(uuid4()),
            name=name,
            processes=tuple(dict.fromkeys(processes)),
            weekly_planning_id=weekly_planning_id,
            public_holiday_events_planning_id=public_holiday_planning_id,
            location=location,
            manufacturer=manufacturer,
            notes=notes,
        )
        self.machines.add(machine.id, machine)
        return machine

    def register_work_center(
        self,
        name: str,
        process: ManufacturingProcess,
        *,
        machine_id: Optional[str] = None,
        time_before_next_operation: timedelta = timedelta(0),
    ) -> WorkCenter:
        if time_before_next_operation < timedelta(0):
            raise ValueError("The time before the next operation cannot be negative")
        if machine_id is not None:
            machine = self.machines.get(machine_id)
            if process not in machine.processes:
                raise ValueError(
                    f"Machine {machine.name!r} does not support {process.value}"
                )
        work_center = WorkCenter(
            id=str(uuid4()),
            name=name,
            process=process,
            machine_id=machine_id,
            time_before_next_operation=time_before_next_operation,
        )
        self.work_centers.add(work_center.id, work_center)
        return work_center

    # ------------------------------------------------------------------
    # Calendars
    # ------------------------------------------------------------------
    def create_weekly_planning(
        self, name: str, days: Sequence[DayPlanning]
    ) -> WeeklyPlanning:
        weekdays = [day.weekday for day in days]
        if len(weekdays) != len(set(weekdays)):
            raise ValueError("A weekly planning can define each weekday only once")
        planning = WeeklyPlanning(
            id=str(uuid4()),
            name=name,
            days=sorted(days, key=lambda day: day.weekday),
        )
        self.weekly_plannings.add(planning.id, planning)
        return planning

    def create_events_planning(
        self, name: str, holidays: Optional[Mapping[date, str]] = None
    ) -> EventsPlanning:
        planning = EventsPlanning(
            id=str(uuid4()),
            name=name,
            lines=[
                EventsPlanningLine(date=day, description=description)
                for day, description in sorted((holidays or {}).items())
            ],
        )
        self.events_plannings.add(planning.id, planning)
        return planning

    def add_public_holiday(
        self, planning_id: str, day: date, description: str = ""
    ) -> EventsPlanning:
        planning = self.events_plannings.get(planning_id)
        if not planning.is_holiday(day):
            planning.lines.append(EventsPlanningLine(date=day, description=description))
            planning.lines.sort(key=lambda line: line.date)
            self.events_plannings.upsert(planning.id, planning)
        return planning

    def assign_weekly_planning(
        self, machine_id: str, planning_id: Optional[str]
    ) -> Machine:
        machine = self.machines.get(machine_id)
        if planning_id is not None:
            planning_id = self.weekly_plannings.get(planning_id).id
        machine.weekly_planning_id = planning_id
        self.machines.upsert(machine.id, machine)
        return machine

    def assign_public_holiday_planning(
        self, machine_id: str, planning_id: Optional[str]
    ) -> Machine:
        machine = self.machines.get(machine_id)
        if planning_id is not None:
            planning_id = self.events_plannings.get(planning_id).id
        machine.public_holiday_events_planning_id = planning_id
        self.machines.upsert(machine.id, machine)
        return machine

    def assign_calendars(
        self,
        machine_id: str,
        weekly_planning_id: Optional[str],
        holiday_planning_id: Optional[str],
    ) -> Machine:
        """Set both calendars of a machine; nothing is stored if either is unknown."""

        machine = self.machines.get(machine_id)
        if weekly_planning_id is not None:
            weekly_planning_id = self.weekly_plannings.get(weekly_planning_id).id
        if holiday_planning_id is not None:
            holiday_planning_id = self.events_plannings.get(holiday_planning_id).id
        machine.weekly_planning_id = weekly_planning_id
        machine.public_holiday_events_planning_id = holiday_planning_id
        self.machines.upsert(machine.id, machine)
        return machine

    def machine_calendar(self, machine: Machine) -> MachineCalendar:
        return self.machine_service.calendar_for(machine)

    # ------------------------------------------------------------------
    # Manufacturing orders
    # ------------------------------------------------------------------
    def build_operation_order(
        self,
        name: str,
        work_center_id: str,
        *,
        duration: timedelta,
        priority: int = 10,
        outsourcing: bool = False,
        description: str = "",
    ) -> OperationOrder:
        if duration <= timedelta(0):
            raise ValueError("Operation duration must be positive")
        work_center = self.work_centers.get(work_center_id)
        return OperationOrder(
            id=str(uuid4()),
            name=name,
            duration=duration,
            priority=priority,
            work_center_id=work_center.id,
            machine_id=work_center.machine_id,
            outsourcing=outsourcing,
            description=description,
        )

    def create_manuf_order(
        self,
        reference: str,
        due_date: date,
        operation_orders: Sequence[OperationOrder],
        *,
        customer_id: Optional[str] = None,
        priority: OrderPriority = OrderPriority.NORMAL,
        remarks: str = "",
    ) -> ManufOrder:
        if customer_id is not None and customer_id not in self.customers:
            raise RecordNotFoundError(f"Customer {customer_id!r} does not exist")
        if not operation_orders:
            raise ValueError("Manufacturing orders must contain at least one operation")
        order = ManufOrder(
            id=str(uuid4()),
            reference=reference,
            due_date=due_date,
            customer_id=customer_id,
            priority=priority,
            operation_orders=list(operation_orders),
            remarks=remarks,
        )
        self.manuf_orders.add(order.id, order)
        return order

    def add_operation_order(
        self, order_id: str, operation_order: OperationOrder
    ) -> ManufOrder:
        order = self.manuf_orders.get(order_id)
        if order.status not in PLANNABLE_STATUSES:
            raise InvalidStatusTransitionError(
                f"Cannot add operations to order {order.reference!r} "
                f"in status {order.status.label}"
            )
        order.operation_orders.append(operation_order)
        self.manuf_orders.upsert(order.id, order)
        return order

    def update_order_status(self, order_id: str, status: ManufOrderStatus) -> ManufOrder:
        order = self.manuf_orders.get(order_id)
        if order.status in INACTIVE_MANUF_ORDER_STATUSES and status != order.status:
            raise InvalidStatusTransitionError(
                f"Order {order.reference!r} is {order.status.label} and cannot change status"
            )
        order.status = status
        self.manuf_orders.upsert(order.id, order)
        return order

    def cancel_manuf_order(self, order_id: str) -> ManufOrder:
        order = self.update_order_status(order_id, ManufOrderStatus.CANCELED)
        for operation_order in order.operation_orders:
            if operation_order.status != OperationOrderStatus.FINISHED:
                operation_order.status = OperationOrderStatus.CANCELED
        self.manuf_orders.upsert(order.id, order)
        logger.info("manuf_order_canceled", extra={"manuf_order_id": order.id})
        return order

    def find_operation_order(
        self, operation_order_id: str
    ) -> Tuple[ManufOrder, OperationOrder]:
        for order in self.manuf_orders:
            operation_order = order.operation_order(operation_order_id)
            if operation_order is not None:
                return order, operation_order
        raise RecordNotFoundError(
            f"Operation order {operation_order_id!r} not found"
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------
    def update_planning_options(
        self,
        *,
        strategy: PlanningStrategy,
        priority_weight: float,
        due_date_weight: float,
        horizon_days: int,
        max_orders_per_cycle: int,
        auto_release_orders: bool,
        default_start_time: time,
        default_end_time: time,
    ) -> PlanningOptions:
        """Apply new fine-tuning parameters for planning."""

        self.planning_options = PlanningOptions(
            strategy=strategy,
            priority_weight=max(priority_weight, 0.01),
            due_date_weight=max(due_date_weight, 0.0),
            horizon_days=max(horizon_days, 0),
            max_orders_per_cycle=max(max_orders_per_cycle, 0),
            auto_release_orders=auto_release_orders,
            default_start_time=default_start_time,
            default_end_time=default_end_time,
        )
        return self.planning_options

    def find_time_slot(
        self,
        machine_id: str,
        operation_order_id: str,
        start: datetime,
        end: datetime,
        *,
        furthest: bool = False,
        ignore_concurrency: bool = False,
    ) -> MachineTimeSlot:
        if end < start:
            raise ValueError("The end of the requested window is before its start")
        machine = self.machines.get(machine_id)
        _, operation_order = self.find_operation_order(operation_order_id)
        service = self.machine_service
        if furthest:
            finder = (
                service.get_furthest_time_slot_from
                if ignore_concurrency
                else service.get_furthest_available_time_slot_from
            )
        else:
            finder = (
                service.get_closest_time_slot_from
                if ignore_concurrency
                else service.get_closest_available_time_slot_from
            )
        return finder(machine, start, end, operation_order)

    def _slot_for(
        self, operation_order: OperationOrder, reference: datetime, *, backward: bool
    ) -> MachineTimeSlot:
        duration = operation_order.duration
        if operation_order.outsourcing or operation_order.machine_id is None:
            if backward:
                return MachineTimeSlot(reference - duration, reference)
            return MachineTimeSlot(reference, reference + duration)
        machine = self.machines.get(operation_order.machine_id)
        if backward:
            return self.machine_service.get_furthest_available_time_slot_from(
                machine, reference - duration, reference, operation_order
            )
        return self.machine_service.get_closest_available_time_slot_from(
            machine, reference, reference + duration, operation_order
        )

    def _open_operation_groups(
        self, order: ManufOrder, *, descending: bool
    ) -> List[List[OperationOrder]]:
        open_operations = sorted(
            (
                operation_order
                for operation_order in order.operation_orders
                if operation_order.status not in CLOSED_OPERATION_STATUSES
            ),
            key=lambda operation_order: operation_order.priority,
            reverse=descending,
        )
        return [
            list(group)
            for _, group in groupby(
                open_operations, key=lambda operation_order: operation_order.priority
            )
        ]

    def _record_slot(
        self,
        order: ManufOrder,
        operation_order: OperationOrder,
        slot: MachineTimeSlot,
    ) -> ScheduledOperation:
        operation_order.planned_start = slot.start
        operation_order.planned_end = slot.end
        operation_order.status = OperationOrderStatus.PLANNED
        # Persist right away so the next operations see this booking.
        self.manuf_orders.upsert(order.id, order)
        return ScheduledOperation(
            manuf_order_id=order.id,
            operation_order_id=operation_order.id,
            machine_id=operation_order.machine_id,
            start=slot.start,
            end=slot.end,
            order_priority=order.priority,
        )

    def _clear_planned_dates(self, order: ManufOrder) -> None:
        for operation_order in order.operation_orders:
            if operation_order.status in CLOSED_OPERATION_STATUSES:
                continue
            operation_order.planned_start = None
            operation_order.planned_end = None
            if operation_order.status == OperationOrderStatus.PLANNED:
                operation_order.status = OperationOrderStatus.DRAFT
        order.planned_start = None
        order.planned_end = None

    @staticmethod
    def _plan_snapshot(order: ManufOrder) -> PlanSnapshot:
        return (
            order.status,
            order.planned_start,
            order.planned_end,
            [
                (
                    operation_order,
                    operation_order.status,
                    operation_order.planned_start,
                    operation_order.planned_end,
                )
                for operation_order in order.operation_orders
            ],
        )

    def _restore_plan(self, order: ManufOrder, snapshot: PlanSnapshot) -> None:
        order.status, order.planned_start, order.planned_end, operations = snapshot
        for operation_order, status, planned_start, planned_end in operations:
            operation_order.status = status
            operation_order.planned_start = planned_start
            operation_order.planned_end = planned_end
        self.manuf_orders.upsert(order.id, order)

    def _place_operations(
        self,
        order: ManufOrder,
        strategy: PlanningStrategy,
        start_reference: Optional[datetime],
        end_reference: Optional[datetime],
    ) -> List[ScheduledOperation]:
        options = self.planning_options
        scheduled: List[ScheduledOperation] = []
        if strategy == PlanningStrategy.ASAP:
            default_start = options.default_start_time or DEFAULT_SHIFT_START
            reference = start_reference or datetime.combine(date.today(), default_start)
            for group in self._open_operation_groups(order, descending=False):
                group_end = reference
                for operation_order in group:
                    slot = self._slot_for(operation_order, reference, backward=False)
                    scheduled.append(self._record_slot(order, operation_order, slot))
                    group_end = max(group_end, slot.end)
                reference = group_end
        else:
            reference = end_reference or datetime.combine(
                order.due_date, options.default_end_time
            )
            for group in self._open_operation_groups(order, descending=True):
                group_start = reference
                for operation_order in group:
                    slot = self._slot_for(operation_order, reference, backward=True)
                    scheduled.append(self._record_slot(order, operation_order, slot))
                    group_start = min(group_start, slot.start)
                reference = group_start
        return scheduled

    def plan_manuf_order(
        self,
        order_id: str,
        *,
        strategy: Optional[PlanningStrategy] = None,
        start_reference: Optional[datetime] = None,
        end_reference: Optional[datetime] = None,
    ) -> PlanningSummary:
        """Place every open operation order of a manufacturing order on its machine.

        Operation orders are processed by ascending priority; those sharing a
        priority run in parallel and the next group waits for all of them.
        With the ALAP strategy the groups are placed backwards from the end
        reference, which defaults to the due date at the default end time.
        """

        order = self.manuf_orders.get(order_id)
        if order.status not in PLANNABLE_STATUSES:
            raise InvalidStatusTransitionError(
                f"Order {order.reference!r} in status {order.status.label} cannot be planned"
            )
        options = self.planning_options
        strategy = strategy or options.strategy
        previous_plan = self._plan_snapshot(order)
        self._clear_planned_dates(order)
        self.manuf_orders.upsert(order.id, order)

        try:
            scheduled = self._place_operations(
                order, strategy, start_reference, end_reference
            )
        except Exception as exc:
            self._restore_plan(order, previous_plan)
            logger.warning(
                "manuf_order_planning_failed",
                extra={
                    "manuf_order_id": order.id,
                    "strategy": strategy,
                    "error_code": getattr(exc, "code", type(exc).__name__),
                },
            )
            raise

        if scheduled:
            order.planned_start = min(operation.start for operation in scheduled)
            order.planned_end = max(operation.end for operation in scheduled)
        if options.auto_release_orders and order.status == ManufOrderStatus.DRAFT:
            order.status = ManufOrderStatus.PLANNED
        self.manuf_orders.upsert(order.id, order)

        summary = PlanningSummary(
            manuf_order_id=order.id,
            strategy=strategy,
            scheduled_operations=sorted(scheduled, key=lambda operation: operation.start),
            planned_start=order.planned_start,
            planned_end=order.planned_end,
            due_date=order.due_date,
        )
        logger.info(
            "manuf_order_planned",
            extra={
                "manuf_order_id": order.id,
                "strategy": strategy,
                "start": order.planned_start,
                "end": order.planned_end,
                "operations": len(scheduled),
                "late": summary.is_late,
            },
        )
        return summary

    def unplan_manuf_order(self, order_id: str) -> ManufOrder:
        order = self.manuf_orders.get(order_id)
        if order.status not in PLANNABLE_STATUSES:
            raise InvalidStatusTransitionError(
                f"Order {order.reference!r} in status {order.status.label} cannot be unplanned"
            )
        self._clear_planned_dates(order)
        order.status = ManufOrderStatus.DRAFT
        self.manuf_orders.upsert(order.id, order)
        logger.info("manuf_order_unplanned", extra={"manuf_order_id": order.id})
        return order

    def schedule_backlog(
        self,
        *,
        start_reference: Optional[datetime] = None,
        horizon_days: Optional[int] = None,
        max_orders: Optional[int] = None,
        strategy: Optional[PlanningStrategy] = None,
    ) -> Dict[str, PlanningSummary]:
        """Plan all open orders using the configured planning options."""

        options = self.planning_options
        horizon = (
            options.horizon_days if horizon_days is None else max(horizon_days, 0)
        )
        limit = (
            options.max_orders_per_cycle
            if max_orders is None
            else max(max_orders, 0)
        )
        priority_weight = max(options.priority_weight, 0.01)
        due_weight = max(options.due_date_weight, 0.0)
        backlog_orders = self.manuf_orders.filter(
            lambda order: order.status in PLANNABLE_STATUSES
        )
        if horizon > 0:
            horizon_date = date.today() + timedelta(days=horizon)
            backlog_orders = [
                order
                for order in backlog_orders
                if order.due_date <= horizon_date
                or order.priority >= OrderPriority.HIGH
            ]

        def backlog_key(order: ManufOrder) -> Tuple[float, float, datetime]:
            priority_score = -int(order.priority) * priority_weight
            due_date_score = order.due_date.toordinal() * due_weight
            return (priority_score, due_date_score, order.created_at)

        backlog_orders.sort(key=backlog_key)
        if limit > 0:
            backlog_orders = backlog_orders[:limit]

        # Release the old bookings first so that orders do not collide with
        # their own previous plan.
        for order in backlog_orders:
            self._clear_planned_dates(order)
            self.manuf_orders.upsert(order.id, order)

        summaries: Dict[str, PlanningSummary] = {}
        for position, order in enumerate(backlog_orders):
            try:
                summaries[order.id] = self.plan_manuf_order(
                    order.id, strategy=strategy, start_reference=start_reference
                )
            except Exception:
                unplanned = backlog_orders[position:]
                for pending in unplanned:
                    self.unplan_manuf_order(pending.id)
                logger.warning(
                    "backlog_planning_aborted",
                    extra={
                        "failed_manuf_order_id": order.id,
                        "planned": len(summaries),
                        "unplanned": len(unplanned),
                    },
                )
                raise
        logger.info(
            "backlog_planned",
            extra={"orders": len(summaries), "horizon_days": horizon},
        )
        return summaries

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    def get_upcoming_operations(
        self, *, limit: int = 10, after: Optional[datetime] = None
    ) -> List[ScheduledOperation]:
        """Return planned operation orders of active orders by start time."""

        operations: List[ScheduledOperation] = []
        for order in self.manuf_orders:
            if order.status in INACTIVE_MANUF_ORDER_STATUSES:
                continue
            for operation_order in order.operation_orders:
                if not operation_order.is_planned:
                    continue
                if operation_order.status in CLOSED_OPERATION_STATUSES:
                    continue
                if after is not None and operation_order.planned_end <= after:
                    continue
                operations.append(
                    ScheduledOperation(
                        manuf_order_id=order.id,
                        operation_order_id=operation_order.id,
                        machine_id=operation_order.machine_id,
                        start=operation_order.planned_start,
                        end=operation_order.planned_end,
                        order_priority=order.priority,
                    )
                )
        operations.sort(key=lambda op: op.start)
        return operations[:limit] if limit else operations

    def machine_load(
        self, machine_id: str, start: datetime, end: datetime
    ) -> MachineLoad:
        """Booked and available hours of a machine between ``start`` and ``end``."""

        if end <= start:
            raise ValueError("The load window must end after it starts")
        machine = self.machines.get(machine_id)
        calendar = self.machine_calendar(machine)
        booked = timedelta(0)
        for order in self.manuf_orders:
            if order.status in INACTIVE_MANUF_ORDER_STATUSES:
                continue
            for operation_order in order.operation_orders:
                if operation_order.machine_id != machine.id or not operation_order.is_planned:
                    continue
                if operation_order.outsourcing:
                    continue
                booked += calendar.working_duration_between(
                    max(start, operation_order.planned_start),
                    min(end, operation_order.planned_end),
                )
        return MachineLoad(
            machine_id=machine.id,
            start=start,
            end=end,
            booked_hours=_hours(booked),
            available_hours=_hours(calendar.working_duration_between(start, end)),
        )

    # ------------------------------------------------------------------
    # Shop floor feedback
    # ------------------------------------------------------------------
    def start_operation_order(
        self, order_id: str, operation_order_id: str, *, at: Optional[datetime] = None
    ) -> OperationOrder:
        order = self.manuf_orders.get(order_id)
        operation_order = self._operation_of(order, operation_order_id)
        if order.status in INACTIVE_MANUF_ORDER_STATUSES or operation_order.status in (
            CLOSED_OPERATION_STATUSES | {OperationOrderStatus.IN_PROGRESS}
        ):
            raise InvalidStatusTransitionError(
                f"Operation {operation_order.name!r} cannot be started"
            )
        operation_order.real_start = at or datetime.now()
        operation_order.status = OperationOrderStatus.IN_PROGRESS
        order.status = ManufOrderStatus.IN_PROGRESS
        self.manuf_orders.upsert(order.id, order)
        logger.info(
            "operation_order_started",
            extra={"manuf_order_id": order.id, "operation_order_id": operation_order.id},
        )
        return operation_order

    def finish_operation_order(
        self, order_id: str, operation_order_id: str, *, at: Optional[datetime] = None
    ) -> OperationOrder:
        order = self.manuf_orders.get(order_id)
        operation_order = self._operation_of(order, operation_order_id)
        if operation_order.status != OperationOrderStatus.IN_PROGRESS:
            raise InvalidStatusTransitionError(
                f"Operation {operation_order.name!r} is not in progress"
            )
        operation_order.real_end = at or datetime.now()
        operation_order.status = OperationOrderStatus.FINISHED
        if all(
            other.status in CLOSED_OPERATION_STATUSES for other in order.operation_orders
        ):
            order.status = ManufOrderStatus.FINISHED
        self.manuf_orders.upsert(order.id, order)
        logger.info(
            "operation_order_finished",
            extra={"manuf_order_id": order.id, "operation_order_id": operation_order.id},
        )
        return operation_order

    @staticmethod
    def _operation_of(order: ManufOrder, operation_order_id: str) -> OperationOrder:
        operation_order = order.operation_order(operation_order_id)
        if operation_order is None:
            raise RecordNotFoundError(
                f"Operation order {operation_order_id!r} is not part of order {order.reference!r}"
            )
        return operation_order

    def record_time_tracking(
        self,
        manuf_order_id: str,
        operation_order_id: str,
        employee: str,
        *,
        start_time: datetime,
        end_time: datetime,
        remarks: str = "",
    ) -> TimeTrackingEntry:
        if end_time <= start_time:
            raise ValueError("A time tracking entry must end after it starts")
        order = self.manuf_orders.get(manuf_order_id)
        self._operation_of(order, operation_order_id)
        entry = TimeTrackingEntry(
            id=str(uuid4()),
            manuf_order_id=manuf_order_id,
            operation_order_id=operation_order_id,
            employee=employee,
            start_time=start_time,
            end_time=end_time,
            remarks=remarks,
        )
        self.time_tracking.add(entry.id, entry)
        return entry

    def calculate_actual_vs_plan(self, order_id: str) -> Dict[str, float]:
        """Compare planned vs. actual hours for the given order."""

        order = self.manuf_orders.get(order_id)
        planned_hours = sum(
            _hours(operation_order.duration) for operation_order in order.operation_orders
        )
        actual_hours = sum(
            _hours(entry.end_time - entry.start_time)
            for entry in self.time_tracking.filter(
                lambda entry: entry.manuf_order_id == order_id
            )
        )
        return {"planned_hours": planned_hours, "actual_hours": actual_hours}


__all__ = [
    "ERPService",
    "PlanningSummary",
    "ScheduledOperation",
    "MachineLoad",
    "build_day_plannings",
]
