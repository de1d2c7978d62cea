"""Persistence helpers for working with relational databases."""

from .sqlalchemy_store import (
    AttendanceRecordRow,
    Base,
    IncidentRecord,
    RecordStore,
    RouteRecord,
    StopRecord,
    StudentRecord,
    create_engine,
    create_sessionmaker,
    create_sqlite_memory_engine,
    ensure_schema,
    record_class,
)

__all__ = [
    "AttendanceRecordRow",
    "Base",
    "IncidentRecord",
    "RecordStore",
    "RouteRecord",
    "StopRecord",
    "StudentRecord",
    "create_engine",
    "create_sessionmaker",
    "create_sqlite_memory_engine",
    "ensure_schema",
    "record_class",
]
