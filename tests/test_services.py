"""Tests for the ERP service facade."""

from datetime import time, timedelta

import pytest

from production_erp.domain import (
    ManufacturingProcess,
    ManufOrderStatus,
    OperationOrderStatus,
    OrderPriority,
    PlanningStrategy,
)
from production_erp.exceptions import InvalidStatusTransitionError, NoPeriodFoundError
from production_erp.repository import RecordNotFoundError
from production_erp.services import build_day_plannings
from tests.conftest import FRIDAY, MONDAY, TUESDAY, at


@pytest.fixture
def shaft_order(service, milling_cell, turning_cell):
    """Turning (priority 10) followed by milling (priority 20)."""
    return service.create_manuf_order(
        "MO-SHAFT",
        FRIDAY,
        [
            service.build_operation_order(
                "Turn shaft", turning_cell.id, duration=timedelta(hours=3), priority=10
            ),
            service.build_operation_order(
                "Mill keyway", milling_cell.id, duration=timedelta(hours=2), priority=20
            ),
        ],
    )


class TestMasterData:
    def test_machine_needs_a_process(self, service):
        with pytest.raises(ValueError):
            service.register_machine("Nothing", [])

    def test_machine_with_unknown_planning(self, service):
        with pytest.raises(RecordNotFoundError):
            service.register_machine(
                "Mill", [ManufacturingProcess.MILLING], weekly_planning_id="missing"
            )

    def test_work_center_process_must_match_machine(self, service, mill):
        with pytest.raises(ValueError):
            service.register_work_center(
                "Wrong cell", ManufacturingProcess.TURNING, machine_id=mill.id
            )

    def test_negative_time_before_next_operation(self, service, mill):
        with pytest.raises(ValueError):
            service.register_work_center(
                "Cell",
                ManufacturingProcess.MILLING,
                machine_id=mill.id,
                time_before_next_operation=timedelta(minutes=-5),
            )

    def test_weekday_defined_twice(self, service):
        days = build_day_plannings([0], morning=(time(8, 0), time(12, 0)))
        with pytest.raises(ValueError):
            service.create_weekly_planning("Twice", days + days)

    def test_public_holiday_is_added_once(self, service, holidays):
        service.add_public_holiday(holidays.id, TUESDAY, "Closed")
        planning = service.add_public_holiday(holidays.id, TUESDAY, "Closed again")
        assert [line.date for line in planning.lines] == [TUESDAY]
        assert service.events_plannings.get(holidays.id).is_holiday(TUESDAY)

    def test_assign_weekly_planning(self, service, mill):
        machine = service.assign_weekly_planning(mill.id, None)
        assert machine.weekly_planning_id is None
        calendar = service.machine_calendar(machine)
        assert calendar.allowed_start_at(at(MONDAY, 3)) == at(MONDAY, 3)

    def test_assign_calendars_checks_both_plannings(self, service, mill, holidays):
        with pytest.raises(RecordNotFoundError):
            service.assign_calendars(mill.id, None, "missing")
        machine = service.machines.get(mill.id)
        assert machine.weekly_planning_id == mill.weekly_planning_id
        assert machine.public_holiday_events_planning_id == mill.public_holiday_events_planning_id

        machine = service.assign_calendars(mill.id, None, holidays.id)
        assert machine.weekly_planning_id is None
        assert machine.public_holiday_events_planning_id == holidays.id

    def test_operation_takes_machine_from_work_center(self, service, mill, milling_cell):
        operation_order = service.build_operation_order(
            "Mill", milling_cell.id, duration=timedelta(hours=1)
        )
        assert operation_order.machine_id == mill.id
        assert operation_order.status == OperationOrderStatus.DRAFT

    def test_operation_needs_positive_duration(self, service, milling_cell):
        with pytest.raises(ValueError):
            service.build_operation_order(
                "Mill", milling_cell.id, duration=timedelta(0)
            )


class TestPlanManufOrder:
    """ASAP and ALAP planning of a manufacturing order."""

    def test_asap_chains_priority_groups(self, service, shaft_order):
        summary = service.plan_manuf_order(
            shaft_order.id, start_reference=at(MONDAY, 8)
        )
        turning, milling = shaft_order.operation_orders
        assert (turning.planned_start, turning.planned_end) == (
            at(MONDAY, 8),
            at(MONDAY, 11),
        )
        assert (milling.planned_start, milling.planned_end) == (
            at(MONDAY, 11),
            at(MONDAY, 14),
        )
        assert summary.planned_start == at(MONDAY, 8)
        assert summary.planned_end == at(MONDAY, 14)
        assert summary.strategy == PlanningStrategy.ASAP
        assert not summary.is_late

    def test_plan_is_persisted_and_order_released(self, service, shaft_order):
        service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))
        stored = service.manuf_orders.get(shaft_order.id)
        assert stored.status == ManufOrderStatus.PLANNED
        assert all(
            operation_order.status == OperationOrderStatus.PLANNED
            for operation_order in stored.operation_orders
        )

    def test_without_auto_release_order_stays_draft(self, service, shaft_order):
        service.planning_options.auto_release_orders = False
        service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))
        assert service.manuf_orders.get(shaft_order.id).status == ManufOrderStatus.DRAFT

    def test_alap_plans_backwards_from_end(self, service, shaft_order):
        summary = service.plan_manuf_order(
            shaft_order.id,
            strategy=PlanningStrategy.ALAP,
            end_reference=at(FRIDAY, 17),
        )
        turning, milling = shaft_order.operation_orders
        assert (milling.planned_start, milling.planned_end) == (
            at(FRIDAY, 15),
            at(FRIDAY, 17),
        )
        assert (turning.planned_start, turning.planned_end) == (
            at(FRIDAY, 11),
            at(FRIDAY, 15),
        )
        assert summary.strategy == PlanningStrategy.ALAP

    def test_alap_defaults_to_due_date(self, service, shaft_order):
        service.planning_options.default_end_time = time(17, 0)
        summary = service.plan_manuf_order(
            shaft_order.id, strategy=PlanningStrategy.ALAP
        )
        assert summary.planned_end == at(FRIDAY, 17)

    def test_same_priority_operations_run_in_parallel(
        self, service, milling_cell, turning_cell
    ):
        order = service.create_manuf_order(
            "MO-PARALLEL",
            FRIDAY,
            [
                service.build_operation_order(
                    "Turn", turning_cell.id, duration=timedelta(hours=1)
                ),
                service.build_operation_order(
                    "Mill", milling_cell.id, duration=timedelta(hours=2)
                ),
            ],
        )
        summary = service.plan_manuf_order(order.id, start_reference=at(MONDAY, 8))
        assert [operation.start for operation in summary.scheduled_operations] == [
            at(MONDAY, 8),
            at(MONDAY, 8),
        ]
        assert summary.planned_end == at(MONDAY, 10)

    def test_second_order_waits_for_the_machine(
        self, service, shaft_order, milling_cell
    ):
        service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))
        other = service.create_manuf_order(
            "MO-OTHER",
            FRIDAY,
            [
                service.build_operation_order(
                    "Mill housing", milling_cell.id, duration=timedelta(hours=2)
                )
            ],
        )
        summary = service.plan_manuf_order(other.id, start_reference=at(MONDAY, 11))
        assert summary.planned_start == at(MONDAY, 14)
        assert summary.planned_end == at(MONDAY, 16)

    def test_replanning_does_not_collide_with_own_plan(self, service, shaft_order):
        service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))
        summary = service.plan_manuf_order(
            shaft_order.id, start_reference=at(MONDAY, 8)
        )
        assert summary.planned_start == at(MONDAY, 8)

    def test_outsourced_operation_ignores_calendar(self, service, milling_cell):
        operation_order = service.build_operation_order(
            "Coating",
            milling_cell.id,
            duration=timedelta(hours=24),
            outsourcing=True,
        )
        order = service.create_manuf_order("MO-COAT", FRIDAY, [operation_order])
        summary = service.plan_manuf_order(order.id, start_reference=at(MONDAY, 20))
        assert summary.planned_end == at(TUESDAY, 20)

    def test_late_plan_is_flagged(self, service, milling_cell):
        order = service.create_manuf_order(
            "MO-LATE",
            MONDAY,
            [
                service.build_operation_order(
                    "Long job", milling_cell.id, duration=timedelta(hours=12)
                )
            ],
        )
        summary = service.plan_manuf_order(order.id, start_reference=at(MONDAY, 8))
        assert summary.is_late

    def test_failed_replanning_restores_previous_plan(self, service, shaft_order, mill):
        service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))
        never = service.create_weekly_planning("Never", [])
        service.assign_weekly_planning(mill.id, never.id)

        with pytest.raises(NoPeriodFoundError):
            service.plan_manuf_order(shaft_order.id, start_reference=at(TUESDAY, 8))

        stored = service.manuf_orders.get(shaft_order.id)
        assert stored.status == ManufOrderStatus.PLANNED
        assert (stored.planned_start, stored.planned_end) == (at(MONDAY, 8), at(MONDAY, 14))
        turning, milling = stored.operation_orders
        assert (turning.planned_start, turning.planned_end) == (at(MONDAY, 8), at(MONDAY, 11))
        assert (milling.planned_start, milling.planned_end) == (at(MONDAY, 11), at(MONDAY, 14))
        assert turning.status == milling.status == OperationOrderStatus.PLANNED

    def test_failed_first_plan_leaves_order_unbooked(self, service, shaft_order, mill):
        never = service.create_weekly_planning("Never", [])
        service.assign_weekly_planning(mill.id, never.id)

        with pytest.raises(NoPeriodFoundError):
            service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))

        stored = service.manuf_orders.get(shaft_order.id)
        assert stored.status == ManufOrderStatus.DRAFT
        assert not any(
            operation_order.is_planned for operation_order in stored.operation_orders
        )
        assert service.get_upcoming_operations(after=at(MONDAY, 0)) == []

    def test_canceled_order_cannot_be_planned(self, service, shaft_order):
        service.cancel_manuf_order(shaft_order.id)
        with pytest.raises(InvalidStatusTransitionError):
            service.plan_manuf_order(shaft_order.id)

    def test_unplan_clears_dates(self, service, shaft_order):
        service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))
        order = service.unplan_manuf_order(shaft_order.id)
        assert order.status == ManufOrderStatus.DRAFT
        assert order.planned_start is None
        assert not any(
            operation_order.is_planned for operation_order in order.operation_orders
        )


class TestSchedulingAndReports:
    def test_backlog_prefers_high_priority(self, service, milling_cell):
        def milling_order(reference, priority):
            return service.create_manuf_order(
                reference,
                FRIDAY,
                [
                    service.build_operation_order(
                        "Mill", milling_cell.id, duration=timedelta(hours=2)
                    )
                ],
                priority=priority,
            )

        normal = milling_order("MO-NORMAL", OrderPriority.NORMAL)
        urgent = milling_order("MO-URGENT", OrderPriority.CRITICAL)
        summaries = service.schedule_backlog(start_reference=at(MONDAY, 8))
        assert summaries[urgent.id].planned_start == at(MONDAY, 8)
        assert summaries[normal.id].planned_start == at(MONDAY, 10)

    def test_backlog_respects_order_limit(self, service, shaft_order, milling_cell):
        service.create_manuf_order(
            "MO-SECOND",
            FRIDAY,
            [
                service.build_operation_order(
                    "Mill", milling_cell.id, duration=timedelta(hours=1)
                )
            ],
        )
        summaries = service.schedule_backlog(
            start_reference=at(MONDAY, 8), max_orders=1
        )
        assert len(summaries) == 1

    def test_backlog_failure_leaves_remaining_orders_in_draft(
        self, service, shaft_order, mill, turning_cell
    ):
        def turning_order(reference, due_date, priority):
            return service.create_manuf_order(
                reference,
                due_date,
                [
                    service.build_operation_order(
                        "Turn", turning_cell.id, duration=timedelta(hours=2)
                    )
                ],
                priority=priority,
            )

        rush = turning_order("MO-RUSH", FRIDAY, OrderPriority.CRITICAL)
        later = turning_order("MO-LATER", FRIDAY + timedelta(days=7), OrderPriority.NORMAL)
        service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))
        service.assign_weekly_planning(mill.id, service.create_weekly_planning("Never", []).id)

        with pytest.raises(NoPeriodFoundError):
            service.schedule_backlog(start_reference=at(MONDAY, 8))

        planned = service.manuf_orders.get(rush.id)
        assert planned.status == ManufOrderStatus.PLANNED
        assert planned.planned_start == at(MONDAY, 8)
        for order_id in (shaft_order.id, later.id):
            stored = service.manuf_orders.get(order_id)
            assert stored.status == ManufOrderStatus.DRAFT
            assert stored.planned_start is None
            assert not any(
                operation_order.is_planned for operation_order in stored.operation_orders
            )

    def test_upcoming_operations_are_sorted(self, service, shaft_order):
        service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))
        upcoming = service.get_upcoming_operations(after=at(MONDAY, 8))
        assert [operation.start for operation in upcoming] == [
            at(MONDAY, 8),
            at(MONDAY, 11),
        ]

    def test_machine_load(self, service, mill, milling_cell, book):
        book(milling_cell, at(MONDAY, 11), at(MONDAY, 14))
        load = service.machine_load(mill.id, at(MONDAY, 8), at(TUESDAY, 8))
        assert load.available_hours == pytest.approx(8.0)
        assert load.booked_hours == pytest.approx(2.0)
        assert load.utilization == pytest.approx(0.25)

    def test_machine_load_ignores_canceled_orders(
        self, service, mill, milling_cell, book
    ):
        book(
            milling_cell,
            at(MONDAY, 8),
            at(MONDAY, 12),
            status=ManufOrderStatus.CANCELED,
        )
        load = service.machine_load(mill.id, at(MONDAY, 8), at(TUESDAY, 8))
        assert load.booked_hours == 0


class TestShopFloor:
    def test_finishing_all_operations_finishes_order(self, service, shaft_order):
        service.plan_manuf_order(shaft_order.id, start_reference=at(MONDAY, 8))
        for operation_order in shaft_order.operation_orders:
            service.start_operation_order(
                shaft_order.id, operation_order.id, at=operation_order.planned_start
            )
            service.finish_operation_order(
                shaft_order.id, operation_order.id, at=operation_order.planned_end
            )
        order = service.manuf_orders.get(shaft_order.id)
        assert order.status == ManufOrderStatus.FINISHED
        with pytest.raises(InvalidStatusTransitionError):
            service.update_order_status(order.id, ManufOrderStatus.PLANNED)

    def test_cannot_finish_operation_not_started(self, service, shaft_order):
        operation_order = shaft_order.operation_orders[0]
        with pytest.raises(InvalidStatusTransitionError):
            service.finish_operation_order(shaft_order.id, operation_order.id)

    def test_actual_vs_plan(self, service, shaft_order):
        turning = shaft_order.operation_orders[0]
        service.record_time_tracking(
            shaft_order.id,
            turning.id,
            "M. Schneider",
            start_time=at(MONDAY, 8),
            end_time=at(MONDAY, 11, 30),
        )
        report = service.calculate_actual_vs_plan(shaft_order.id)
        assert report == {"planned_hours": 5.0, "actual_hours": 3.5}

    def test_time_tracking_needs_known_operation(self, service, shaft_order):
        with pytest.raises(RecordNotFoundError):
            service.record_time_tracking(
                shaft_order.id,
                "missing",
                "M. Schneider",
                start_time=at(MONDAY, 8),
                end_time=at(MONDAY, 9),
            )

    def test_find_operation_order(self, service, shaft_order):
        milling = shaft_order.operation_orders[1]
        order, operation_order = service.find_operation_order(milling.id)
        assert order.id == shaft_order.id
        assert operation_order.name == "Mill keyway"

    def test_find_time_slot(self, service, mill, shaft_order):
        milling = shaft_order.operation_orders[1]
        slot = service.find_time_slot(
            mill.id, milling.id, at(MONDAY, 11), at(MONDAY, 13)
        )
        assert (slot.start, slot.end) == (at(MONDAY, 11), at(MONDAY, 14))

    def test_find_time_slot_rejects_reversed_window(self, service, mill, shaft_order):
        milling = shaft_order.operation_orders[1]
        with pytest.raises(ValueError):
            service.find_time_slot(mill.id, milling.id, at(MONDAY, 13), at(MONDAY, 11))
