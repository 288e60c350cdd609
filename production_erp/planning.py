"""Working-period arithmetic on top of weekly plannings and public holidays."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import AbstractSet, Iterator, List, Optional, Tuple

from .domain import EventsPlanning, WeeklyPlanning

MAX_SEARCH_DAYS = 366

Period = Tuple[datetime, datetime]


def day_of_end(moment: datetime) -> date:
    """Return the day a period ending at ``moment`` belongs to.

    An end at 00:00 closes the previous day.
    """

    if moment.time() == time.min:
        return moment.date() - timedelta(days=1)
    return moment.date()


class MachineCalendar:
    """Working periods of a machine.

    Without a weekly planning a machine works around the clock; holidays are
    never worked.
    """

    def __init__(
        self,
        weekly_planning: Optional[WeeklyPlanning] = None,
        holidays: AbstractSet[date] = frozenset(),
    ) -> None:
        self.weekly_planning = weekly_planning
        self.holidays = frozenset(holidays)

    @classmethod
    def from_plannings(
        cls,
        weekly_planning: Optional[WeeklyPlanning],
        events_planning: Optional[EventsPlanning],
    ) -> "MachineCalendar":
        holidays = events_planning.dates if events_planning is not None else frozenset()
        return cls(weekly_planning, holidays)

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays

    def periods_on(self, day: date) -> List[Period]:
        if day in self.holidays:
            return []
        if self.weekly_planning is None:
            start = datetime.combine(day, time.min)
            return [(start, start + timedelta(days=1))]
        day_planning = self.weekly_planning.day_planning(day.weekday())
        if day_planning is None:
            return []
        return day_planning.periods_on(day)

    def _periods_forward(self, moment: datetime) -> Iterator[Period]:
        # Start one day early so periods running past midnight are seen.
        first_day = moment.date() - timedelta(days=1)
        for offset in range(MAX_SEARCH_DAYS + 1):
            yield from self.periods_on(first_day + timedelta(days=offset))

    def _periods_backward(self, moment: datetime) -> Iterator[Period]:
        last_day = moment.date()
        for offset in range(MAX_SEARCH_DAYS + 1):
            yield from reversed(self.periods_on(last_day - timedelta(days=offset)))

    # ------------------------------------------------------------------
    # Forward placement
    # ------------------------------------------------------------------
    def allowed_start_at(self, moment: datetime) -> Optional[datetime]:
        """Earliest instant >= ``moment`` at which work can start."""

        for start, end in self._periods_forward(moment):
            if moment < start:
                return start
            if moment < end:
                return moment
        return None

    def allowed_end_after(self, moment: datetime) -> Optional[datetime]:
        """Earliest instant >= ``moment`` inside a working period, bounds included."""

        for start, end in self._periods_forward(moment):
            if moment < start:
                return start
            if moment <= end:
                return moment
        return None

    # ------------------------------------------------------------------
    # Backward placement
    # ------------------------------------------------------------------
    def allowed_end_at(self, moment: datetime) -> Optional[datetime]:
        """Latest instant <= ``moment`` at which work can end."""

        for start, end in self._periods_backward(moment):
            if moment > end:
                return end
            if moment > start:
                return moment
        return None

    def allowed_start_before(self, moment: datetime) -> Optional[datetime]:
        """Latest instant <= ``moment`` inside a working period, bounds included."""

        for start, end in self._periods_backward(moment):
            if moment > end:
                return end
            if moment >= start:
                return moment
        return None

    # ------------------------------------------------------------------
    # Durations
    # ------------------------------------------------------------------
    def working_duration_between(self, start: datetime, end: datetime) -> timedelta:
        if end <= start:
            return timedelta(0)
        worked = timedelta(0)
        day = start.date() - timedelta(days=1)
        while day <= end.date():
            for period_start, period_end in self.periods_on(day):
                overlap = min(end, period_end) - max(start, period_start)
                if overlap > timedelta(0):
                    worked += overlap
            day += timedelta(days=1)
        return worked

    def void_duration_between(self, start: datetime, end: datetime) -> timedelta:
        """Time inside [start, end] during which the machine does not work."""

        if end <= start:
            return timedelta(0)
        return (end - start) - self.working_duration_between(start, end)


__all__ = ["MachineCalendar", "MAX_SEARCH_DAYS", "day_of_end"]
