"""Typed CRUD over the record store plus the grouping helpers views rely on."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Iterable, Optional
import logging
import re
import time

from .entities import (
    AttendanceRecord,
    AttendanceStatus,
    EntityKind,
    Incident,
    Route,
    Stop,
    Student,
    generate_id,
)
from .persistence import RecordStore
from .snapshot import Snapshot, export_snapshot

logger = logging.getLogger(__name__)

DEFAULT_INCIDENT_TYPE = "General"

_BULK_SPLIT = re.compile(r"[\n,]+")


def split_bulk_names(text: str) -> list[str]:
    """Split a free-text block on newlines or commas; trim and drop empties."""
    return [part.strip() for part in _BULK_SPLIT.split(text or "") if part.strip()]


def now_ms() -> int:
    return int(time.time() * 1000)


def today_iso() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _day_key(day: str | date | None) -> str:
    if day is None:
        return today_iso()
    if isinstance(day, date):
        return day.isoformat()
    return day


@dataclass
class RouteGroup:
    route: Route
    students: list[Student] = field(default_factory=list)


@dataclass
class StopGroup:
    stop: Stop
    students: list[Student] = field(default_factory=list)


@dataclass(frozen=True)
class DailySummary:
    day: str
    total: int
    present: int
    absent: int


class TransportRepository:
    """One list/get/save/delete set per entity over a :class:`RecordStore`.

    Nothing is cached: every call reads the store afresh. References between
    entities are soft, so deletes never cascade and orphans simply drop out
    of the grouped views.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    # Routes -------------------------------------------------------------------

    def list_routes(self) -> list[Route]:
        return self.store.get_all(EntityKind.ROUTES)

    def get_route(self, route_id: str) -> Optional[Route]:
        return self.store.get(EntityKind.ROUTES, route_id, None)

    def save_route(self, route: Route) -> Route:
        self.store.put(EntityKind.ROUTES, route)
        return route

    def delete_route(self, route_id: str) -> bool:
        return self.store.delete(EntityKind.ROUTES, route_id)

    def create_route(self, name: str, description: Optional[str] = None) -> Route:
        return self.save_route(Route(id=generate_id(), name=name, description=description))

    # Stops --------------------------------------------------------------------

    def list_stops(self) -> list[Stop]:
        return self.store.get_all(EntityKind.STOPS)

    def get_stop(self, stop_id: str) -> Optional[Stop]:
        return self.store.get(EntityKind.STOPS, stop_id, None)

    def save_stop(self, stop: Stop) -> Stop:
        self.store.put(EntityKind.STOPS, stop)
        return stop

    def delete_stop(self, stop_id: str) -> bool:
        return self.store.delete(EntityKind.STOPS, stop_id)

    def add_stops_bulk(self, route_id: str, text: str) -> list[Stop]:
        """Create one stop per name in ``text``.

        ``order`` continues from the size of the whole stop collection, not
        from the highest stored order. After deletions a new stop can share an
        order value with a surviving one; ties then fall back to insertion
        order.
        """
        names = split_bulk_names(text)
        start = self.store.count(EntityKind.STOPS)
        stops = [
            Stop(id=generate_id(), route_id=route_id, name=name, order=start + offset)
            for offset, name in enumerate(names)
        ]
        for stop in stops:
            self.save_stop(stop)
        logger.info("repository.stops_added route_id=%s count=%d", route_id, len(stops))
        return stops

    def edit_stop(self, stop_id: str, *, route_id: str, name: str) -> Stop:
        """Replace a single stop, keeping its stored order. ``name`` is never split."""
        current = self.get_stop(stop_id)
        order = current.order if current is not None else 0
        return self.save_stop(Stop(id=stop_id, route_id=route_id, name=name, order=order))

    def stops_for_route(self, route_id: str) -> list[Stop]:
        """Stops of ``route_id`` in pickup order; ties keep insertion order."""
        stops = [s for s in self.list_stops() if s.route_id == route_id]
        return sorted(stops, key=lambda s: s.order)

    # Students -----------------------------------------------------------------

    def list_students(self) -> list[Student]:
        return self.store.get_all(EntityKind.STUDENTS)

    def get_student(self, student_id: str) -> Optional[Student]:
        return self.store.get(EntityKind.STUDENTS, student_id, None)

    def save_student(self, student: Student) -> Student:
        self.store.put(EntityKind.STUDENTS, student)
        return student

    def delete_student(self, student_id: str) -> bool:
        return self.store.delete(EntityKind.STUDENTS, student_id)

    def add_students_bulk(self, stop_id: str, text: str) -> list[Student]:
        """Create one active student per name in ``text``, without contact details."""
        students = [
            Student(
                id=generate_id(),
                stop_id=stop_id,
                name=name,
                active=True,
                guardian_name="",
                contact="",
            )
            for name in split_bulk_names(text)
        ]
        for student in students:
            self.save_student(student)
        logger.info("repository.students_added stop_id=%s count=%d", stop_id, len(students))
        return students

    def edit_student(
        self,
        student_id: str,
        *,
        stop_id: str,
        name: str,
        guardian_name: Optional[str] = None,
        contact: Optional[str] = None,
        active: bool = True,
    ) -> Student:
        """Replace a single student. ``name`` is never split."""
        return self.save_student(
            Student(
                id=student_id,
                stop_id=stop_id,
                name=name,
                active=active,
                guardian_name=guardian_name,
                contact=contact,
            )
        )

    def students_for_stop(self, stop_id: str) -> list[Student]:
        return [s for s in self.list_students() if s.stop_id == stop_id]

    def route_for_student(self, student: Student) -> Optional[Route]:
        """Resolve the student's route through its stop; ``None`` for orphans."""
        stop = self.get_stop(student.stop_id)
        if stop is None:
            return None
        return self.get_route(stop.route_id)

    def students_by_stop(self) -> dict[str, StopGroup]:
        """Stop id -> students at that stop. Students of missing stops are left out."""
        groups = {stop.id: StopGroup(stop) for stop in self.list_stops()}
        for student in self.list_students():
            group = groups.get(student.stop_id)
            if group is not None:
                group.students.append(student)
        return groups

    def students_by_route(self) -> dict[str, RouteGroup]:
        """Route id -> students riding it, sorted by their stop's order.

        A student whose stop (or whose stop's route) is gone appears in no group.
        """
        stops = {stop.id: stop for stop in self.list_stops()}
        groups = {route.id: RouteGroup(route) for route in self.list_routes()}
        for student in self.list_students():
            stop = stops.get(student.stop_id)
            if stop is None:
                continue
            group = groups.get(stop.route_id)
            if group is not None:
                group.students.append(student)
        for group in groups.values():
            group.students.sort(key=lambda s: stops[s.stop_id].order)
        return groups

    # Attendance ---------------------------------------------------------------

    def list_attendance(self) -> list[AttendanceRecord]:
        return self.store.get_all(EntityKind.ATTENDANCE)

    def get_attendance(self, record_id: str) -> Optional[AttendanceRecord]:
        return self.store.get(EntityKind.ATTENDANCE, record_id, None)

    def save_attendance(self, record: AttendanceRecord) -> AttendanceRecord:
        self.store.put(EntityKind.ATTENDANCE, record)
        return record

    def delete_attendance(self, record_id: str) -> bool:
        return self.store.delete(EntityKind.ATTENDANCE, record_id)

    def mark_attendance(
        self,
        student_id: str,
        status: AttendanceStatus | str,
        *,
        day: str | date | None = None,
        timestamp: Optional[int] = None,
    ) -> AttendanceRecord:
        """Record the student's status for ``day``, overwriting any earlier mark."""
        record = AttendanceRecord.mark(
            student_id,
            _day_key(day),
            status,
            now_ms() if timestamp is None else timestamp,
        )
        return self.save_attendance(record)

    def attendance_for_day(self, day: str | date | None = None) -> dict[str, AttendanceStatus]:
        return {
            record.student_id: record.status
            for record in self.store.attendance_by_date(_day_key(day))
        }

    def attendance_history(self, student_id: str) -> list[AttendanceRecord]:
        return self.store.attendance_by_student(student_id)

    def daily_summary(self, day: str | date | None = None) -> DailySummary:
        key = _day_key(day)
        statuses = self.attendance_for_day(key).values()
        return DailySummary(
            day=key,
            total=self.store.count(EntityKind.STUDENTS),
            present=sum(1 for s in statuses if s is AttendanceStatus.PRESENT),
            absent=sum(1 for s in statuses if s is AttendanceStatus.ABSENT),
        )

    # Incidents ----------------------------------------------------------------

    def list_incidents(self, *, newest_first: bool = False) -> list[Incident]:
        incidents = self.store.get_all(EntityKind.INCIDENTS)
        if newest_first:
            incidents.sort(key=lambda i: i.timestamp, reverse=True)
        return incidents

    def get_incident(self, incident_id: str) -> Optional[Incident]:
        return self.store.get(EntityKind.INCIDENTS, incident_id, None)

    def save_incident(self, incident: Incident) -> Incident:
        self.store.put(EntityKind.INCIDENTS, incident)
        return incident

    def delete_incident(self, incident_id: str) -> bool:
        return self.store.delete(EntityKind.INCIDENTS, incident_id)

    def record_incident(
        self,
        student_id: str,
        observation: str,
        *,
        type: Optional[str] = None,
        when: Optional[datetime] = None,
    ) -> Incident:
        when = when or datetime.now(timezone.utc)
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        incident = Incident(
            id=generate_id(),
            student_id=student_id,
            type=type or DEFAULT_INCIDENT_TYPE,
            observation=observation,
            date=when.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            timestamp=int(when.timestamp() * 1000),
        )
        return self.save_incident(incident)

    # Snapshot -----------------------------------------------------------------

    def export_all_data(self, *, now: Optional[datetime] = None) -> Snapshot:
        return export_snapshot(self.store, now=now)

    def collections(self) -> dict[str, Iterable]:
        """Fresh copies of all five collections, keyed like the snapshot document."""
        return {kind.value: self.store.get_all(kind) for kind in EntityKind}
