"""Demonstration script for the production planning ERP."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from pprint import pprint

from . import ERPService, ManufacturingProcess, PlanningStrategy
from .logging_config import configure_logging
from .services import build_day_plannings


def main() -> None:
    configure_logging()
    erp = ERPService()

    # Master data
    week = erp.create_weekly_planning(
        "Day shift",
        build_day_plannings(
            range(0, 5), morning=(time(7, 0), time(12, 0)), afternoon=(time(13, 0), time(16, 0))
        ),
    )
    next_monday = date.today() + timedelta(days=7 - date.today().weekday())
    holidays = erp.create_events_planning(
        "Company holidays", {next_monday + timedelta(days=2): "Works meeting"}
    )
    customer = erp.create_customer(
        name="Sondermaschinen Müller GmbH",
        address="Werkstraße 12, 32547 Bad Oeynhausen",
        contact_person="Sabine Hartmann",
    )

    mill = erp.register_machine(
        name="Hermle C 42 U",
        processes=[ManufacturingProcess.MILLING],
        weekly_planning_id=week.id,
        public_holiday_planning_id=holidays.id,
        manufacturer="Hermle",
    )
    lathe = erp.register_machine(
        name="DMG MORI CTX beta 800",
        processes=[ManufacturingProcess.TURNING],
        weekly_planning_id=week.id,
        public_holiday_planning_id=holidays.id,
        manufacturer="DMG MORI",
    )
    milling_cell = erp.register_work_center(
        "Milling cell",
        ManufacturingProcess.MILLING,
        machine_id=mill.id,
        time_before_next_operation=timedelta(minutes=30),
    )
    turning_cell = erp.register_work_center(
        "Turning cell", ManufacturingProcess.TURNING, machine_id=lathe.id
    )

    first = erp.create_manuf_order(
        reference="MO-2024-015",
        due_date=next_monday + timedelta(days=4),
        customer_id=customer.id,
        operation_orders=[
            erp.build_operation_order(
                "Turn shaft", turning_cell.id, duration=timedelta(hours=6), priority=10
            ),
            erp.build_operation_order(
                "Mill keyway", milling_cell.id, duration=timedelta(hours=9), priority=20
            ),
        ],
    )
    second = erp.create_manuf_order(
        reference="MO-2024-016",
        due_date=next_monday + timedelta(days=9),
        customer_id=customer.id,
        operation_orders=[
            erp.build_operation_order(
                "Mill housing", milling_cell.id, duration=timedelta(hours=5)
            ),
        ],
    )

    start = datetime.combine(next_monday, time(7, 0))
    for order in (first, second):
        summary = erp.plan_manuf_order(order.id, start_reference=start)
        print(f"Plan {order.reference} (ASAP)")
        for scheduled in summary.scheduled_operations:
            operation = order.operation_order(scheduled.operation_order_id)
            machine = erp.machines.get(scheduled.machine_id)
            print(
                f" - {operation.name} on {machine.name}: "
                f"{scheduled.start:%a %d.%m %H:%M} - {scheduled.end:%a %d.%m %H:%M}"
            )

    summary = erp.plan_manuf_order(second.id, strategy=PlanningStrategy.ALAP)
    print(f"\nPlan {second.reference} (ALAP, due {second.due_date})")
    for scheduled in summary.scheduled_operations:
        print(f" - {scheduled.start:%a %d.%m %H:%M} - {scheduled.end:%a %d.%m %H:%M}")

    load = erp.machine_load(mill.id, start, start + timedelta(days=7))
    print(
        f"\nLoad {mill.name}: {load.booked_hours:.1f}h of {load.available_hours:.1f}h "
        f"({load.utilization:.0%})"
    )

    # Shop floor feedback
    turning = first.operation_orders[0]
    erp.start_operation_order(first.id, turning.id, at=turning.planned_start)
    erp.record_time_tracking(
        first.id,
        turning.id,
        "M. Schneider",
        start_time=turning.planned_start,
        end_time=turning.planned_start + timedelta(hours=6.5),
    )
    print("\nPlanned vs. actual")
    pprint(erp.calculate_actual_vs_plan(first.id))


if __name__ == "__main__":  # pragma: no cover - manual execution
    main()
