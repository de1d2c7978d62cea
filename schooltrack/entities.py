"""Domain entities (Route, Stop, Student, AttendanceRecord, Incident) and kinds."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date as calendar_date
from enum import Enum
from typing import Any, Mapping, Optional
import re
import uuid

__all__ = [
    "AttendanceRecord",
    "AttendanceStatus",
    "EntityKind",
    "Incident",
    "Route",
    "Stop",
    "Student",
    "attendance_id",
    "check_day",
    "entity_class",
    "generate_id",
]


def generate_id() -> str:
    """Return a fresh opaque identifier."""
    return str(uuid.uuid4())


def attendance_id(day: str, student_id: str) -> str:
    return f"{day}_{student_id}"


_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def check_day(value: str) -> str:
    """Return ``value`` if it is a real calendar day written as ``YYYY-MM-DD``."""
    if not _DAY_RE.match(value):
        raise ValueError(f"date must look like YYYY-MM-DD, got {value!r}")
    calendar_date.fromisoformat(value)
    return value


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    UNMARKED = "UNMARKED"


class EntityKind(str, Enum):
    """Closed set of collections held by the record store.

    The value doubles as the snapshot document key for the collection.
    """

    ROUTES = "routes"
    STOPS = "stops"
    STUDENTS = "students"
    ATTENDANCE = "attendance"
    INCIDENTS = "incidents"


def validate_str_fields(*names: str):
    """Decorator factory: enforce ``str`` attributes on __post_init__."""

    def deco(cls):
        orig_post = getattr(cls, "__post_init__", None)

        def post(self):
            for name in names:
                if not isinstance(getattr(self, name), str):
                    raise TypeError(f"{cls.__name__}.{name} must be a string")
            if orig_post:
                orig_post(self)

        cls.__post_init__ = post
        return cls

    return deco


def _require(payload: Mapping[str, Any], key: str, kind: type) -> Any:
    if key not in payload:
        raise KeyError(key)
    value = payload[key]
    if kind is int and isinstance(value, bool):
        raise TypeError(f"{key} must be {kind.__name__}")
    if not isinstance(value, kind):
        raise TypeError(f"{key} must be {kind.__name__}")
    return value


def _optional(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


@dataclass(slots=True)
@validate_str_fields("id", "name")
class Route:
    id: str
    name: str
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "name": self.name}
        if self.description is not None:
            out["description"] = self.description
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Route":
        return cls(
            id=_require(payload, "id", str),
            name=_require(payload, "name", str),
            description=_optional(payload, "description"),
        )


@dataclass(slots=True)
@validate_str_fields("id", "route_id", "name")
class Stop:
    id: str
    route_id: str
    name: str
    order: int = 0

    def __post_init__(self):
        if isinstance(self.order, bool) or not isinstance(self.order, int):
            raise TypeError("Stop.order must be an integer")
        if self.order < 0:
            raise ValueError("Stop.order must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "routeId": self.route_id,
            "name": self.name,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Stop":
        return cls(
            id=_require(payload, "id", str),
            route_id=_require(payload, "routeId", str),
            name=_require(payload, "name", str),
            order=_require(payload, "order", int),
        )


@dataclass(slots=True)
@validate_str_fields("id", "stop_id", "name")
class Student:
    id: str
    stop_id: str
    name: str
    active: bool = True
    guardian_name: Optional[str] = None
    contact: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "stopId": self.stop_id,
            "name": self.name,
            "active": self.active,
        }
        if self.guardian_name is not None:
            out["guardianName"] = self.guardian_name
        if self.contact is not None:
            out["contact"] = self.contact
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Student":
        return cls(
            id=_require(payload, "id", str),
            stop_id=_require(payload, "stopId", str),
            name=_require(payload, "name", str),
            active=_require(payload, "active", bool),
            guardian_name=_optional(payload, "guardianName"),
            contact=_optional(payload, "contact"),
        )


@dataclass(slots=True)
@validate_str_fields("id", "student_id", "date")
class AttendanceRecord:
    id: str
    student_id: str
    date: str
    status: AttendanceStatus
    timestamp: int

    def __post_init__(self):
        check_day(self.date)
        # Accept raw strings from callers and documents alike
        self.status = AttendanceStatus(self.status)

    @classmethod
    def mark(
        cls, student_id: str, day: str, status: AttendanceStatus | str, timestamp: int
    ) -> "AttendanceRecord":
        """Build the record keyed by ``(day, student_id)``."""
        return cls(
            id=attendance_id(day, student_id),
            student_id=student_id,
            date=day,
            status=AttendanceStatus(status),
            timestamp=timestamp,
        )

    @property
    def day_of_month(self) -> int:
        return int(self.date.split("-")[2])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "date": self.date,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AttendanceRecord":
        return cls(
            id=_require(payload, "id", str),
            student_id=_require(payload, "studentId", str),
            date=_require(payload, "date", str),
            status=_require(payload, "status", str),
            timestamp=_require(payload, "timestamp", int),
        )


@dataclass(slots=True)
@validate_str_fields("id", "student_id", "type", "observation", "date")
class Incident:
    id: str
    student_id: str
    type: str
    observation: str
    date: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "type": self.type,
            "observation": self.observation,
            "date": self.date,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Incident":
        return cls(
            id=_require(payload, "id", str),
            student_id=_require(payload, "studentId", str),
            type=_require(payload, "type", str),
            observation=_require(payload, "observation", str),
            date=_require(payload, "date", str),
            timestamp=_require(payload, "timestamp", int),
        )


_ENTITY_CLASSES: dict[EntityKind, type] = {
    EntityKind.ROUTES: Route,
    EntityKind.STOPS: Stop,
    EntityKind.STUDENTS: Student,
    EntityKind.ATTENDANCE: AttendanceRecord,
    EntityKind.INCIDENTS: Incident,
}


def entity_class(kind: EntityKind) -> type:
    return _ENTITY_CLASSES[EntityKind(kind)]
