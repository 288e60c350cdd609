"""Shared fixtures for the production planning tests.

All dates are in the week of Monday 2024-01-08. The standard weekly planning
works Monday to Friday, 08:00-12:00 and 13:00-17:00.
"""

from datetime import date, datetime, time, timedelta

import pytest

from production_erp.domain import ManufacturingProcess, ManufOrderStatus, OperationOrder
from production_erp.services import ERPService, build_day_plannings

MONDAY = date(2024, 1, 8)
TUESDAY = MONDAY + timedelta(days=1)
WEDNESDAY = MONDAY + timedelta(days=2)
FRIDAY = MONDAY + timedelta(days=4)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


@pytest.fixture
def service() -> ERPService:
    return ERPService()


@pytest.fixture
def week(service):
    return service.create_weekly_planning(
        "Day shift",
        build_day_plannings(
            range(0, 5),
            morning=(time(8, 0), time(12, 0)),
            afternoon=(time(13, 0), time(17, 0)),
        ),
    )


@pytest.fixture
def holidays(service):
    return service.create_events_planning("Public holidays")


@pytest.fixture
def mill(service, week, holidays):
    return service.register_machine(
        "Hermle C 42 U",
        [ManufacturingProcess.MILLING],
        weekly_planning_id=week.id,
        public_holiday_planning_id=holidays.id,
    )


@pytest.fixture
def lathe(service, week, holidays):
    return service.register_machine(
        "DMG MORI CTX beta 800",
        [ManufacturingProcess.TURNING],
        weekly_planning_id=week.id,
        public_holiday_planning_id=holidays.id,
    )


@pytest.fixture
def milling_cell(service, mill):
    return service.register_work_center(
        "Milling cell", ManufacturingProcess.MILLING, machine_id=mill.id
    )


@pytest.fixture
def turning_cell(service, lathe):
    return service.register_work_center(
        "Turning cell", ManufacturingProcess.TURNING, machine_id=lathe.id
    )


@pytest.fixture
def book(service):
    """Create a manufacturing order holding one already planned operation."""

    def _book(
        work_center,
        start: datetime,
        end: datetime,
        *,
        status: ManufOrderStatus = ManufOrderStatus.PLANNED,
        outsourcing: bool = False,
    ) -> OperationOrder:
        operation_order = service.build_operation_order(
            "Existing booking",
            work_center.id,
            duration=end - start,
            outsourcing=outsourcing,
        )
        operation_order.planned_start = start
        operation_order.planned_end = end
        order = service.create_manuf_order(
            f"MO-BOOKED-{len(service.manuf_orders) + 1}",
            FRIDAY,
            [operation_order],
        )
        order.status = status
        service.manuf_orders.upsert(order.id, order)
        return operation_order

    return _book
