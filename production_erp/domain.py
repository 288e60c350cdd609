"""Core data structures for the production planning ERP."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum, IntEnum
from typing import List, Optional, Sequence, Tuple

MIDNIGHT = time(0, 0)


class ManufacturingProcess(str, Enum):
    """Enumeration of the manufacturing processes used in the shop."""

    TURNING = "Turning"
    MILLING = "Milling"
    LASER_CUTTING = "Laser Cutting"
    BENDING = "Bending"
    WELDING = "Welding"
    GRINDING = "Grinding"
    SAWING = "Sawing"
    ASSEMBLY = "Assembly"


class ManufOrderStatus(IntEnum):
    """Lifecycle stages for a manufacturing order."""

    DRAFT = 1
    CANCELED = 2
    PLANNED = 3
    IN_PROGRESS = 4
    STANDBY = 5
    FINISHED = 6

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


class OperationOrderStatus(IntEnum):
    """Lifecycle stages for a single operation order."""

    DRAFT = 1
    CANCELED = 2
    PLANNED = 3
    IN_PROGRESS = 4
    STANDBY = 5
    FINISHED = 6

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


class OrderPriority(IntEnum):
    """Priority levels for manufacturing orders used during planning."""

    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return {
            OrderPriority.LOW: "Low",
            OrderPriority.NORMAL: "Normal",
            OrderPriority.HIGH: "High",
            OrderPriority.CRITICAL: "Critical",
        }[self]


class PlanningStrategy(str, Enum):
    """Direction in which the operations of an order are placed."""

    ASAP = "asap"
    ALAP = "alap"


@dataclass(slots=True)
class Customer:
    """Customer master data."""

    id: str
    name: str
    address: str
    contact_person: str
    contact_email: str = ""
    contact_phone: str = ""
    industry: str = ""


def _period_bounds(
    start: Optional[time], end: Optional[time], label: str
) -> Optional[Tuple[time, time]]:
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise ValueError(f"The {label} period needs both a start and an end time")
    if end != MIDNIGHT and end <= start:
        raise ValueError(f"The {label} period must end after it starts")
    return start, end


@dataclass(slots=True)
class DayPlanning:
    """Working periods of a machine for one weekday.

    A period ending at 00:00 runs until midnight at the end of the day.
    """

    weekday: int
    morning_from: Optional[time] = None
    morning_to: Optional[time] = None
    afternoon_from: Optional[time] = None
    afternoon_to: Optional[time] = None

    def __post_init__(self) -> None:
        if self.weekday < 0 or self.weekday > 6:
            raise ValueError("Weekday indices must be in range 0..6")
        morning = _period_bounds(self.morning_from, self.morning_to, "morning")
        afternoon = _period_bounds(
            self.afternoon_from, self.afternoon_to, "afternoon"
        )
        if morning is not None and afternoon is not None:
            if morning[1] == MIDNIGHT or afternoon[0] < morning[1]:
                raise ValueError("The afternoon period cannot start before the morning ends")

    def periods_on(self, day: date) -> List[Tuple[datetime, datetime]]:
        """Return the concrete working periods of this planning on ``day``."""

        periods: List[Tuple[datetime, datetime]] = []
        for start, end in (
            (self.morning_from, self.morning_to),
            (self.afternoon_from, self.afternoon_to),
        ):
            if start is None or end is None:
                continue
            period_start = datetime.combine(day, start)
            if end == MIDNIGHT:
                period_end = datetime.combine(day + timedelta(days=1), MIDNIGHT)
            else:
                period_end = datetime.combine(day, end)
            periods.append((period_start, period_end))
        return periods


@dataclass(slots=True)
class WeeklyPlanning:
    """Weekly working-hours calendar; weekdays without a day planning are off."""

    id: str
    name: str
    days: List[DayPlanning] = field(default_factory=list)

    def day_planning(self, weekday: int) -> Optional[DayPlanning]:
        for day_planning in self.days:
            if day_planning.weekday == weekday:
                return day_planning
        return None


@dataclass(slots=True)
class EventsPlanningLine:
    date: date
    description: str = ""


@dataclass(slots=True)
class EventsPlanning:
    """A list of dated events, used for public holidays."""

    id: str
    name: str
    lines: List[EventsPlanningLine] = field(default_factory=list)

    def is_holiday(self, day: date) -> bool:
        return any(line.date == day for line in self.lines)

    @property
    def dates(self) -> frozenset:
        return frozenset(line.date for line in self.lines)


@dataclass(slots=True)
class Machine:
    """A machine resource that can execute one or more processes."""

    id: str
    name: str
    processes: Sequence[ManufacturingProcess]
    weekly_planning_id: Optional[str] = None
    public_holiday_events_planning_id: Optional[str] = None
    location: str = ""
    manufacturer: str = ""
    notes: str = ""


@dataclass(slots=True)
class WorkCenter:
    """Place where a process is executed, optionally bound to a machine."""

    id: str
    name: str
    process: ManufacturingProcess
    machine_id: Optional[str] = None
    time_before_next_operation: timedelta = timedelta(0)


@dataclass(slots=True)
class OperationOrder:
    """An individual manufacturing step of a manufacturing order."""

    id: str
    name: str
    duration: timedelta
    priority: int = 10
    work_center_id: Optional[str] = None
    machine_id: Optional[str] = None
    outsourcing: bool = False
    status: OperationOrderStatus = OperationOrderStatus.DRAFT
    planned_start: Optional[datetime] = None
    planned_end: Optional[datetime] = None
    real_start: Optional[datetime] = None
    real_end: Optional[datetime] = None
    description: str = ""

    @property
    def is_planned(self) -> bool:
        return self.planned_start is not None and self.planned_end is not None


@dataclass(slots=True)
class ManufOrder:
    """A manufacturing order with a sequence of operation orders."""

    id: str
    reference: str
    due_date: date
    customer_id: Optional[str] = None
    status: ManufOrderStatus = ManufOrderStatus.DRAFT
    priority: OrderPriority = OrderPriority.NORMAL
    operation_orders: List[OperationOrder] = field(default_factory=list)
    planned_start: Optional[datetime] = None
    planned_end: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    remarks: str = ""

    def operation_order(self, operation_order_id: str) -> Optional[OperationOrder]:
        for operation_order in self.operation_orders:
            if operation_order.id == operation_order_id:
                return operation_order
        return None


@dataclass(slots=True)
class TimeTrackingEntry:
    """Actual production time feedback from the shop floor."""

    id: str
    manuf_order_id: str
    operation_order_id: str
    employee: str
    start_time: datetime
    end_time: datetime
    remarks: str = ""


@dataclass(frozen=True, slots=True)
class MachineTimeSlot:
    """A window during which a machine is booked for an operation."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


__all__ = [
    "ManufacturingProcess",
    "ManufOrderStatus",
    "OperationOrderStatus",
    "OrderPriority",
    "PlanningStrategy",
    "Customer",
    "DayPlanning",
    "WeeklyPlanning",
    "EventsPlanningLine",
    "EventsPlanning",
    "Machine",
    "WorkCenter",
    "OperationOrder",
    "ManufOrder",
    "TimeTrackingEntry",
    "MachineTimeSlot",
]
