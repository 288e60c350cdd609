"""FastAPI-based web interface for the ERP system."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlencode

from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

from ..config import Settings
from ..domain import (
    ManufacturingProcess,
    ManufOrderStatus,
    OrderPriority,
    PlanningStrategy,
)
from ..exceptions import ProductionError
from ..logging_config import configure_logging, get_logger
from ..repository import RecordNotFoundError
from ..services import ERPService, build_day_plannings
from ..storage import ERPDatabase

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

logger = get_logger("web")


def create_app(
    database_path: Optional[str] = None, settings: Optional[Settings] = None
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(level=settings.LOG_LEVEL)
    database = ERPDatabase(database_path or settings.DATABASE_PATH)
    service = ERPService(
        customer_repo=database.customers,
        machine_repo=database.machines,
        work_center_repo=database.work_centers,
        weekly_planning_repo=database.weekly_plannings,
        events_planning_repo=database.events_plannings,
        manuf_order_repo=database.manuf_orders,
        time_tracking_repo=database.time_tracking,
    )
    if settings.LOAD_DEMO_DATA:
        ensure_demo_data(service)

    app = FastAPI(title=settings.APP_TITLE)
    app.state.erp_service = service
    app.state.database = database

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        database.close()

    @app.get("/")
    async def dashboard(request: Request):
        service: ERPService = request.app.state.erp_service
        orders = sorted(
            service.manuf_orders.list(),
            key=lambda order: (order.due_date, -int(order.priority)),
        )
        machines = {machine.id: machine for machine in service.machines.list()}
        operations = {
            operation_order.id: operation_order
            for order in orders
            for operation_order in order.operation_orders
        }
        late_orders = [
            order
            for order in orders
            if order.planned_end is not None and order.planned_end.date() > order.due_date
        ]
        return templates.TemplateResponse(
            request,
            "dashboard.html",
            {
                "orders": orders,
                "machines": machines,
                "operations": operations,
                "upcoming": service.get_upcoming_operations(limit=15),
                "late_orders": late_orders,
                "error": request.query_params.get("error"),
            },
        )

    @app.post("/schedule/backlog")
    async def schedule_backlog(request: Request):
        service: ERPService = request.app.state.erp_service
        try:
            service.schedule_backlog()
        except (ProductionError, RecordNotFoundError) as exc:
            return _redirect_with_error("/", exc)
        return RedirectResponse("/", status_code=303)

    @app.get("/planning")
    async def planning_overview(request: Request):
        service: ERPService = request.app.state.erp_service
        orders = service.manuf_orders.filter(
            lambda order: order.status
            not in {ManufOrderStatus.FINISHED, ManufOrderStatus.CANCELED},
            key=lambda order: (-int(order.priority), order.due_date, order.created_at),
        )
        query = request.query_params
        scheduled_count = query.get("scheduled")
        operations_planned = query.get("operations")
        late_count = query.get("late")
        return templates.TemplateResponse(
            request,
            "planning.html",
            {
                "planning_options": service.planning_options,
                "strategies": list(PlanningStrategy),
                "orders": orders,
                "scheduled_count": int(scheduled_count) if scheduled_count else None,
                "operations_planned": int(operations_planned)
                if operations_planned
                else None,
                "late_count": int(late_count) if late_count else None,
                "options_updated": "options" in query,
                "error": query.get("error"),
            },
        )

    @app.post("/planning/options")
    async def update_planning_options(
        request: Request,
        strategy: str = Form(PlanningStrategy.ASAP.value),
        priority_weight: float = Form(...),
        due_date_weight: float = Form(...),
        horizon_days: int = Form(0),
        max_orders_per_cycle: int = Form(0),
        default_start_time: str = Form("06:00"),
        default_end_time: str = Form("22:00"),
        auto_release_orders: Optional[str] = Form(None),
    ):
        service: ERPService = request.app.state.erp_service
        options = service.planning_options
        service.update_planning_options(
            strategy=parse_strategy(strategy) or options.strategy,
            priority_weight=priority_weight,
            due_date_weight=due_date_weight,
            horizon_days=horizon_days,
            max_orders_per_cycle=max_orders_per_cycle,
            auto_release_orders=auto_release_orders is not None,
            default_start_time=parse_time(default_start_time) or options.default_start_time,
            default_end_time=parse_time(default_end_time) or options.default_end_time,
        )
        redirect = "/planning?" + urlencode({"options": "updated"})
        return RedirectResponse(redirect, status_code=303)

    @app.post("/planning/run")
    async def run_planning(
        request: Request,
        start_date: Optional[str] = Form(None),
        start_time_value: Optional[str] = Form(None),
        horizon_override: Optional[str] = Form(None),
        max_orders: Optional[str] = Form(None),
        strategy: Optional[str] = Form(None),
    ):
        service: ERPService = request.app.state.erp_service
        start_reference: Optional[datetime] = None
        if start_date:
            try:
                date_part = datetime.strptime(start_date, "%Y-%m-%d").date()
            except ValueError:
                date_part = None
            if date_part is not None:
                time_part = (
                    parse_time(start_time_value or "")
                    or service.planning_options.default_start_time
                )
                start_reference = datetime.combine(date_part, time_part)
        try:
            summaries = service.schedule_backlog(
                start_reference=start_reference,
                horizon_days=parse_non_negative_int(horizon_override),
                max_orders=parse_non_negative_int(max_orders),
                strategy=parse_strategy(strategy or ""),
            )
        except (ProductionError, RecordNotFoundError) as exc:
            return _redirect_with_error("/planning", exc)
        params = {
            "scheduled": len(summaries),
            "operations": sum(
                len(summary.scheduled_operations) for summary in summaries.values()
            ),
        }
        late = sum(1 for summary in summaries.values() if summary.is_late)
        if late:
            params["late"] = late
        return RedirectResponse("/planning?" + urlencode(params), status_code=303)

    @app.post("/orders/{order_id}/plan")
    async def plan_order(
        order_id: str, request: Request, strategy: Optional[str] = Form(None)
    ):
        service: ERPService = request.app.state.erp_service
        try:
            service.plan_manuf_order(order_id, strategy=parse_strategy(strategy or ""))
        except (ProductionError, RecordNotFoundError) as exc:
            return _redirect_with_error("/", exc)
        return RedirectResponse("/", status_code=303)

    @app.post("/orders/{order_id}/unplan")
    async def unplan_order(order_id: str, request: Request):
        service: ERPService = request.app.state.erp_service
        try:
            service.unplan_manuf_order(order_id)
        except (ProductionError, RecordNotFoundError) as exc:
            return _redirect_with_error("/", exc)
        return RedirectResponse("/", status_code=303)

    @app.post("/orders/{order_id}/cancel")
    async def cancel_order(order_id: str, request: Request):
        service: ERPService = request.app.state.erp_service
        try:
            service.cancel_manuf_order(order_id)
        except (ProductionError, RecordNotFoundError) as exc:
            return _redirect_with_error("/", exc)
        return RedirectResponse("/", status_code=303)

    @app.get("/calendars")
    async def calendar_overview(request: Request):
        service: ERPService = request.app.state.erp_service
        return templates.TemplateResponse(
            request,
            "calendars.html",
            {
                "weekly_plannings": service.weekly_plannings.list(),
                "holiday_plannings": service.events_plannings.list(),
                "machines": service.machines.list(),
                "error": request.query_params.get("error"),
            },
        )

    @app.post("/calendars/weekly")
    async def create_weekly_planning(
        request: Request,
        name: str = Form(...),
        weekdays: str = Form("0,1,2,3,4"),
        morning: str = Form(""),
        afternoon: str = Form(""),
    ):
        service: ERPService = request.app.state.erp_service
        try:
            days = build_day_plannings(
                parse_weekdays(weekdays),
                morning=parse_period(morning),
                afternoon=parse_period(afternoon),
            )
            service.create_weekly_planning(name=name, days=days)
        except ValueError as exc:
            return _redirect_with_error("/calendars", exc)
        return RedirectResponse("/calendars", status_code=303)

    @app.post("/calendars/holidays")
    async def create_holiday_planning(
        request: Request, name: str = Form(...), days: str = Form("")
    ):
        service: ERPService = request.app.state.erp_service
        holidays = {}
        for token in split_csv(days):
            parsed = parse_date(token)
            if parsed is not None:
                holidays[parsed] = ""
        service.create_events_planning(name=name, holidays=holidays)
        return RedirectResponse("/calendars", status_code=303)

    @app.post("/calendars/holidays/{planning_id}/day")
    async def add_holiday(
        planning_id: str,
        request: Request,
        day: str = Form(...),
        description: str = Form(""),
    ):
        service: ERPService = request.app.state.erp_service
        parsed = parse_date(day)
        if parsed is None:
            return _redirect_with_error("/calendars", ValueError(f"Invalid date {day!r}"))
        try:
            service.add_public_holiday(planning_id, parsed, description)
        except RecordNotFoundError as exc:
            return _redirect_with_error("/calendars", exc)
        return RedirectResponse("/calendars", status_code=303)

    @app.post("/machines")
    async def register_machine(
        request: Request,
        name: str = Form(...),
        processes: str = Form(...),
        weekly_planning_id: str = Form(""),
        holiday_planning_id: str = Form(""),
        location: str = Form(""),
        manufacturer: str = Form(""),
    ):
        service: ERPService = request.app.state.erp_service
        try:
            service.register_machine(
                name=name,
                processes=parse_processes(processes),
                weekly_planning_id=weekly_planning_id or None,
                public_holiday_planning_id=holiday_planning_id or None,
                location=location,
                manufacturer=manufacturer,
            )
        except (ValueError, RecordNotFoundError) as exc:
            return _redirect_with_error("/calendars", exc)
        return RedirectResponse("/calendars", status_code=303)

    @app.post("/machines/{machine_id}/calendar")
    async def assign_calendar(
        machine_id: str,
        request: Request,
        weekly_planning_id: str = Form(""),
        holiday_planning_id: str = Form(""),
    ):
        service: ERPService = request.app.state.erp_service
        try:
            service.assign_calendars(
                machine_id, weekly_planning_id or None, holiday_planning_id or None
            )
        except RecordNotFoundError as exc:
            return _redirect_with_error("/calendars", exc)
        return RedirectResponse("/calendars", status_code=303)

    @app.get("/api/machines/{machine_id}/time-slot")
    async def machine_time_slot(
        machine_id: str,
        request: Request,
        operation_order_id: str,
        start: datetime,
        end: datetime,
        furthest: bool = False,
        ignore_concurrency: bool = False,
    ):
        service: ERPService = request.app.state.erp_service
        try:
            slot = service.find_time_slot(
                machine_id,
                operation_order_id,
                start,
                end,
                furthest=furthest,
                ignore_concurrency=ignore_concurrency,
            )
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ProductionError as exc:
            raise HTTPException(
                status_code=400, detail={"code": exc.code, "message": exc.message}
            ) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "machine_id": machine_id,
            "operation_order_id": operation_order_id,
            "start": slot.start.isoformat(),
            "end": slot.end.isoformat(),
            "duration_seconds": slot.duration.total_seconds(),
        }

    @app.get("/api/machines/{machine_id}/load")
    async def machine_load(
        machine_id: str, request: Request, start: datetime, end: datetime
    ):
        service: ERPService = request.app.state.erp_service
        try:
            load = service.machine_load(machine_id, start, end)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "machine_id": load.machine_id,
            "booked_hours": load.booked_hours,
            "available_hours": load.available_hours,
            "utilization": load.utilization,
        }

    return app


def _redirect_with_error(path: str, exc: Exception) -> RedirectResponse:
    logger.warning(
        "request_failed",
        extra={"path": path, "error": str(exc), "error_type": type(exc).__name__},
    )
    return RedirectResponse(
        f"{path}?" + urlencode({"error": str(exc)}), status_code=303
    )


def split_csv(values: str) -> List[str]:
    return [value.strip() for value in values.split(",") if value.strip()]


def parse_processes(value: str) -> Sequence[ManufacturingProcess]:
    processes: List[ManufacturingProcess] = []
    for token in split_csv(value):
        for process in ManufacturingProcess:
            if token.lower() in {process.value.lower(), process.name.lower()}:
                processes.append(process)
                break
    return processes


def parse_strategy(value: str) -> Optional[PlanningStrategy]:
    try:
        return PlanningStrategy(value.strip().lower())
    except ValueError:
        return None


def parse_time(value: str) -> Optional[time]:
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError:
        return None


def parse_date(value: str) -> Optional[date]:
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def parse_non_negative_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return max(int(value), 0)
    except ValueError:
        return None


def parse_weekdays(value: str) -> List[int]:
    """Parse ``"0,1,2"`` into weekday indices (0=Monday)."""

    weekdays = []
    for token in split_csv(value):
        weekday = int(token)
        if weekday < 0 or weekday > 6:
            raise ValueError("Weekday indices must be in range 0..6")
        weekdays.append(weekday)
    return weekdays


def parse_period(value: str) -> Optional[Tuple[time, time]]:
    """Parse ``"08:00-12:00"``; an empty value means no period."""

    if not value.strip():
        return None
    start_text, _, end_text = value.partition("-")
    start, end = parse_time(start_text), parse_time(end_text)
    if start is None or end is None:
        raise ValueError(f"Invalid period {value!r}, expected HH:MM-HH:MM")
    return start, end


def ensure_demo_data(service: ERPService) -> None:
    if len(service.customers) > 0:
        return

    two_shifts = service.create_weekly_planning(
        name="Standard two shifts",
        days=build_day_plannings(
            range(0, 5), morning=(time(6, 0), time(14, 0)), afternoon=(time(14, 0), time(22, 0))
        ),
    )
    day_shift = service.create_weekly_planning(
        name="Day shift",
        days=build_day_plannings(
            range(0, 5), morning=(time(7, 0), time(12, 0)), afternoon=(time(12, 30), time(16, 0))
        ),
    )
    this_year = date.today().year
    holidays = service.create_events_planning(
        name="Public holidays",
        holidays={
            date(this_year, 1, 1): "New Year's Day",
            date(this_year, 5, 1): "Labour Day",
            date(this_year, 10, 3): "German Unity Day",
            date(this_year, 12, 25): "Christmas Day",
            date(this_year, 12, 26): "Boxing Day",
        },
    )

    customer = service.create_customer(
        name="Sondermaschinen Müller GmbH",
        address="Werkstraße 12, 32547 Bad Oeynhausen",
        contact_person="Sabine Hartmann",
        contact_email="s.hartmann@sondermueller.de",
        industry="Automotive",
    )

    machine_specs = [
        ("DMG MORI CTX beta 800", ManufacturingProcess.TURNING, two_shifts, "DMG MORI"),
        ("Hermle C 42 U", ManufacturingProcess.MILLING, two_shifts, "Hermle"),
        ("Trumpf TruLaser 3030", ManufacturingProcess.LASER_CUTTING, two_shifts, "Trumpf"),
        ("Fronius TPSi 400", ManufacturingProcess.WELDING, day_shift, "Fronius"),
        ("Behringer HBP 413 A", ManufacturingProcess.SAWING, day_shift, "Behringer"),
    ]
    work_centers = {}
    for name, process, planning, manufacturer in machine_specs:
        machine = service.register_machine(
            name=name,
            processes=[process],
            weekly_planning_id=planning.id,
            public_holiday_planning_id=holidays.id,
            manufacturer=manufacturer,
        )
        work_centers[process] = service.register_work_center(
            name=f"{process.value} cell",
            process=process,
            machine_id=machine.id,
            time_before_next_operation=timedelta(minutes=15),
        )
    work_centers[ManufacturingProcess.ASSEMBLY] = service.register_work_center(
        name="Subcontracted assembly",
        process=ManufacturingProcess.ASSEMBLY,
    )

    def operation(name, process, hours, priority, outsourcing=False):
        return service.build_operation_order(
            name=name,
            work_center_id=work_centers[process].id,
            duration=timedelta(hours=hours),
            priority=priority,
            outsourcing=outsourcing,
        )

    service.create_manuf_order(
        reference="MO-0015",
        due_date=date.today() + timedelta(days=14),
        customer_id=customer.id,
        priority=OrderPriority.HIGH,
        remarks="Machine frame with tight tolerances",
        operation_orders=[
            operation("Saw blanks", ManufacturingProcess.SAWING, 1.75, 10),
            operation("Laser cut sheets", ManufacturingProcess.LASER_CUTTING, 2.25, 10),
            operation("Turn shafts", ManufacturingProcess.TURNING, 5.5, 20),
            operation("Mill housings", ManufacturingProcess.MILLING, 4.75, 20),
            operation("Weld frame", ManufacturingProcess.WELDING, 4.0, 30),
            operation("Final assembly", ManufacturingProcess.ASSEMBLY, 8.0, 40, True),
        ],
    )
    service.create_manuf_order(
        reference="MO-0016",
        due_date=date.today() + timedelta(days=10),
        customer_id=customer.id,
        priority=OrderPriority.NORMAL,
        remarks="Spare parts for an existing machine",
        operation_orders=[
            operation("Saw blanks", ManufacturingProcess.SAWING, 1.2, 10),
            operation("Mill fixtures", ManufacturingProcess.MILLING, 3.0, 20),
            operation("Weld subassembly", ManufacturingProcess.WELDING, 1.25, 30),
        ],
    )

    service.schedule_backlog()
