"""Production planning ERP.

This package provides data models, pluggable persistence, and planning
services that place manufacturing operations on machines according to their
weekly working hours, public holidays and concurrent bookings.
"""

from .domain import (
    ManufacturingProcess,
    Customer,
    DayPlanning,
    WeeklyPlanning,
    EventsPlanning,
    Machine,
    WorkCenter,
    OperationOrder,
    ManufOrder,
    ManufOrderStatus,
    MachineTimeSlot,
    PlanningStrategy,
)
from .machine_service import MachineService
from .services import ERPService, PlanningSummary

__all__ = [
    "ManufacturingProcess",
    "Customer",
    "DayPlanning",
    "WeeklyPlanning",
    "EventsPlanning",
    "Machine",
    "WorkCenter",
    "OperationOrder",
    "ManufOrder",
    "ManufOrderStatus",
    "MachineTimeSlot",
    "PlanningStrategy",
    "MachineService",
    "ERPService",
    "PlanningSummary",
]
