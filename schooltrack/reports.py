"""Monthly attendance/incident aggregation per route and student.

Everything here is a pure function of the collections passed in: nothing is
read from or written to the record store, and dangling references (a student
whose stop is gone, a stop whose route is gone) drop the row instead of
raising.
"""

from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence
import re

from .entities import (
    AttendanceRecord,
    AttendanceStatus,
    Incident,
    Route,
    Stop,
    Student,
)

__all__ = [
    "RouteReport",
    "StudentStats",
    "compute_monthly_report",
    "days_in_month",
    "monthly_incident_details",
    "parse_month",
    "report_to_df",
]

UNKNOWN_STUDENT = "Unknown"

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_month(month: str) -> tuple[int, int]:
    """Return ``(year, month)`` for a ``YYYY-MM`` key."""
    m = _MONTH_RE.match(month or "")
    if not m:
        raise ValueError(f"month must look like YYYY-MM, got {month!r}")
    year, mon = int(m.group(1)), int(m.group(2))
    if not 1 <= mon <= 12:
        raise ValueError(f"month out of range in {month!r}")
    return year, mon


def days_in_month(month: str) -> int:
    year, mon = parse_month(month)
    return monthrange(year, mon)[1]


@dataclass
class StudentStats:
    student: Student
    present_count: int = 0
    absent_count: int = 0
    present_days: list[int] = field(default_factory=list)
    absent_days: list[int] = field(default_factory=list)
    incident_count: int = 0

    @property
    def frequency(self) -> float:
        """Share of recorded days marked present.

        A month with no recorded days yields 0.0: the denominator is floored
        to 1.
        """
        return self.present_count / max(self.present_count + self.absent_count, 1)

    @property
    def frequency_label(self) -> str:
        return f"{self.frequency * 100:.0f}%"


@dataclass
class RouteReport:
    route_id: str
    route_name: str
    students: list[StudentStats] = field(default_factory=list)


def _in_month(value: str, month: str) -> bool:
    return value.startswith(month)


def compute_monthly_report(
    month: str,
    *,
    routes: Sequence[Route],
    stops: Sequence[Stop],
    students: Sequence[Student],
    attendance: Iterable[AttendanceRecord],
    incidents: Iterable[Incident],
) -> dict[str, RouteReport]:
    """Per-route, per-student statistics for ``month`` (``YYYY-MM``).

    Every route gets an entry, possibly with no students. Routes and the
    students within each route keep the order of the input sequences.
    """
    parse_month(month)

    report = {route.id: RouteReport(route.id, route.name) for route in routes}
    stop_route = {stop.id: stop.route_id for stop in stops}

    present: dict[str, list[int]] = {}
    absent: dict[str, list[int]] = {}
    for record in attendance:
        if not _in_month(record.date, month):
            continue
        if record.status is AttendanceStatus.PRESENT:
            present.setdefault(record.student_id, []).append(record.day_of_month)
        elif record.status is AttendanceStatus.ABSENT:
            absent.setdefault(record.student_id, []).append(record.day_of_month)

    incident_counts: dict[str, int] = {}
    for incident in incidents:
        if _in_month(incident.date, month):
            incident_counts[incident.student_id] = incident_counts.get(incident.student_id, 0) + 1

    for student in students:
        route_id = stop_route.get(student.stop_id)
        if route_id is None or route_id not in report:
            continue
        present_days = sorted(present.get(student.id, []))
        absent_days = sorted(absent.get(student.id, []))
        report[route_id].students.append(
            StudentStats(
                student=student,
                present_count=len(present_days),
                absent_count=len(absent_days),
                present_days=present_days,
                absent_days=absent_days,
                incident_count=incident_counts.get(student.id, 0),
            )
        )

    return report


REPORT_COLUMNS = [
    "route",
    "student",
    "present",
    "present_days",
    "absent",
    "absent_days",
    "incidents",
    "frequency",
]


def report_to_df(report: dict[str, RouteReport]):
    """Materialize a monthly report as a pandas DataFrame.

    One row per student; routes without students are skipped. Day lists are
    rendered as comma-separated text and ``frequency`` as a whole percent.
    """
    import pandas as pd

    rows = []
    for group in report.values():
        for stats in group.students:
            rows.append(
                {
                    "route": group.route_name,
                    "student": stats.student.name,
                    "present": stats.present_count,
                    "present_days": ", ".join(str(d) for d in stats.present_days),
                    "absent": stats.absent_count,
                    "absent_days": ", ".join(str(d) for d in stats.absent_days),
                    "incidents": stats.incident_count,
                    "frequency": stats.frequency_label,
                }
            )
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def monthly_incident_details(
    month: str,
    *,
    incidents: Iterable[Incident],
    students: Iterable[Student],
):
    """Incidents of ``month`` as a DataFrame of date, student, type and observation."""
    import pandas as pd

    parse_month(month)
    names = {student.id: student.name for student in students}
    rows = [
        {
            "date": datetime.fromtimestamp(inc.timestamp / 1000, tz=timezone.utc).date().isoformat(),
            "student": names.get(inc.student_id, UNKNOWN_STUDENT),
            "type": inc.type,
            "observation": inc.observation,
        }
        for inc in incidents
        if _in_month(inc.date, month)
    ]
    return pd.DataFrame(rows, columns=["date", "student", "type", "observation"])
