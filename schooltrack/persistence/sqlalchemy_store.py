"""SQLAlchemy record store for :mod:`schooltrack` entities.

The store keeps five independent collections (routes, stops, students,
attendance, incidents), one table each, selected through the closed
:class:`~schooltrack.entities.EntityKind` enum. A few guiding principles:

* Upsert by id. A write either inserts a fresh row or fully replaces the
  stored one; there is no partial patch.
* Preserve insertion order. Every table carries a ``position`` column
  assigned on first insert and left untouched by later overwrites, so
  ``get_all`` returns rows in the order they were created.
* No foreign keys. Stops point at routes and students at stops through
  plain indexed string columns; deleting a parent never cascades.
* One transaction per write, scoped to a single collection. Only ``clear``
  spans every table.

Driver errors never leak: any :class:`sqlalchemy.exc.SQLAlchemyError` is
re-raised as :class:`~schooltrack.errors.StorageFailure`.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator
import logging

from sqlalchemy import (
    BigInteger,
    Boolean,
    Integer,
    MetaData,
    String,
    Text,
    create_engine as _sa_create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool

from ..entities import (
    AttendanceRecord,
    EntityKind,
    Incident,
    Route,
    Stop,
    Student,
    entity_class,
)
from ..errors import NotFound, StorageFailure

logger = logging.getLogger(__name__)

_MISSING: Any = object()

# ---------------------------------------------------------------------------
# SQLAlchemy ORM models
# ---------------------------------------------------------------------------

_naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=_naming_convention)


class RouteRecord(Base):
    __tablename__ = "routes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    def apply(self, route: Route) -> None:
        self.name = route.name
        self.description = route.description

    def to_entity(self) -> Route:
        return Route(id=self.id, name=self.name, description=self.description)


class StopRecord(Base):
    __tablename__ = "stops"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    route_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    order: Mapped[int] = mapped_column("stop_order", Integer, nullable=False, default=0)

    def apply(self, stop: Stop) -> None:
        self.route_id = stop.route_id
        self.name = stop.name
        self.order = stop.order

    def to_entity(self) -> Stop:
        return Stop(id=self.id, route_id=self.route_id, name=self.name, order=self.order)


class StudentRecord(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    stop_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    guardian_name: Mapped[str | None] = mapped_column(Text)
    contact: Mapped[str | None] = mapped_column(Text)

    def apply(self, student: Student) -> None:
        self.stop_id = student.stop_id
        self.name = student.name
        self.active = bool(student.active)
        self.guardian_name = student.guardian_name
        self.contact = student.contact

    def to_entity(self) -> Student:
        return Student(
            id=self.id,
            stop_id=self.stop_id,
            name=self.name,
            active=bool(self.active),
            guardian_name=self.guardian_name,
            contact=self.contact,
        )


class AttendanceRecordRow(Base):
    __tablename__ = "attendance"

    # ``id`` is ``{date}_{student_id}``: one status per student per day
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    student_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    date: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def apply(self, record: AttendanceRecord) -> None:
        self.student_id = record.student_id
        self.date = record.date
        self.status = record.status.value
        self.timestamp = record.timestamp

    def to_entity(self) -> AttendanceRecord:
        return AttendanceRecord(
            id=self.id,
            student_id=self.student_id,
            date=self.date,
            status=self.status,
            timestamp=self.timestamp,
        )


class IncidentRecord(Base):
    __tablename__ = "incidents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    student_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    observation: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[str] = mapped_column(String(40), nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def apply(self, incident: Incident) -> None:
        self.student_id = incident.student_id
        self.type = incident.type
        self.observation = incident.observation
        self.date = incident.date
        self.timestamp = incident.timestamp

    def to_entity(self) -> Incident:
        return Incident(
            id=self.id,
            student_id=self.student_id,
            type=self.type,
            observation=self.observation,
            date=self.date,
            timestamp=self.timestamp,
        )


_RECORD_CLASSES: dict[EntityKind, type[Base]] = {
    EntityKind.ROUTES: RouteRecord,
    EntityKind.STOPS: StopRecord,
    EntityKind.STUDENTS: StudentRecord,
    EntityKind.ATTENDANCE: AttendanceRecordRow,
    EntityKind.INCIDENTS: IncidentRecord,
}


def record_class(kind: EntityKind) -> type[Base]:
    return _RECORD_CLASSES[EntityKind(kind)]


# ---------------------------------------------------------------------------
# Engine / session helpers
# ---------------------------------------------------------------------------


def create_engine(url: str, *, echo: bool = False, **kwargs):
    """Wrapper around :func:`sqlalchemy.create_engine` for convenience.

    Parent directories of a file-backed SQLite database are created on demand.
    """

    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return _sa_create_engine(url, echo=echo, **kwargs)


def create_sqlite_memory_engine(echo: bool = False):
    """Quick helper for unit tests; all sessions share one connection."""

    return _sa_create_engine(
        "sqlite+pysqlite:///:memory:",
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


def create_sessionmaker(engine, *, expire_on_commit: bool = False, **kwargs):
    """Return a configured ``sessionmaker`` factory for the given engine."""

    return sessionmaker(bind=engine, expire_on_commit=expire_on_commit, class_=Session, **kwargs)


def ensure_schema(engine) -> None:
    """Create the database schema if it does not already exist."""

    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StorageFailure(f"Failed creating schema: {exc}") from exc


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------


class RecordStore:
    """Durable keyed storage for the five entity collections."""

    def __init__(self, engine, *, create: bool = True):
        self.engine = engine
        self._sessions = create_sessionmaker(engine)
        if create:
            ensure_schema(engine)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> "RecordStore":
        try:
            engine = create_engine(url, echo=echo)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageFailure(f"Failed opening record store {url}: {exc}") from exc
        logger.info("record_store.opened url=%s", engine.url.render_as_string(hide_password=True))
        return cls(engine)

    @classmethod
    def in_memory(cls) -> "RecordStore":
        return cls(create_sqlite_memory_engine())

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _transaction(self, action: str, kind: str) -> Iterator[Session]:
        try:
            with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("record_store.%s_failed kind=%s error=%s", action, kind, exc)
            raise StorageFailure(f"Failed to {action} {kind}: {exc}") from exc

    # -- reads --------------------------------------------------------------

    def get_all(self, kind: EntityKind) -> list[Any]:
        """Every item of ``kind`` in insertion order."""
        kind = EntityKind(kind)
        cls = record_class(kind)
        with self._transaction("read", kind.value) as session:
            rows = session.execute(select(cls).order_by(cls.position)).scalars().all()
            return [row.to_entity() for row in rows]

    def get(self, kind: EntityKind, item_id: str, default: Any = _MISSING) -> Any:
        """Return one item; raise :class:`NotFound` unless ``default`` is given."""
        kind = EntityKind(kind)
        with self._transaction("read", kind.value) as session:
            row = session.get(record_class(kind), item_id)
            if row is not None:
                return row.to_entity()
        if default is _MISSING:
            raise NotFound(kind.value, item_id)
        return default

    def count(self, kind: EntityKind) -> int:
        kind = EntityKind(kind)
        cls = record_class(kind)
        with self._transaction("read", kind.value) as session:
            return int(session.execute(select(func.count()).select_from(cls)).scalar_one())

    def attendance_by_date(self, day: str) -> list[AttendanceRecord]:
        cls = AttendanceRecordRow
        stmt = select(cls).where(cls.date == day).order_by(cls.position)
        with self._transaction("read", EntityKind.ATTENDANCE.value) as session:
            return [row.to_entity() for row in session.execute(stmt).scalars()]

    def attendance_by_student(self, student_id: str) -> list[AttendanceRecord]:
        cls = AttendanceRecordRow
        stmt = select(cls).where(cls.student_id == student_id).order_by(cls.position)
        with self._transaction("read", EntityKind.ATTENDANCE.value) as session:
            return [row.to_entity() for row in session.execute(stmt).scalars()]

    # -- writes -------------------------------------------------------------

    def put(self, kind: EntityKind, item: Any) -> None:
        """Insert ``item`` or fully overwrite the stored row with the same id."""
        self.put_many(kind, [item])

    def put_many(self, kind: EntityKind, items: Iterable[Any]) -> int:
        """Upsert several items of one kind in a single transaction."""
        kind = EntityKind(kind)
        expected = entity_class(kind)
        items = list(items)
        for item in items:
            if not isinstance(item, expected):
                raise TypeError(
                    f"{kind.value} expects {expected.__name__}, got {type(item).__name__}"
                )
        if not items:
            return 0

        cls = record_class(kind)
        with self._transaction("write", kind.value) as session:
            top = session.execute(select(func.max(cls.position))).scalar_one_or_none()
            next_position = 0 if top is None else top + 1
            pending: dict[str, Any] = {}
            for item in items:
                row = pending.get(item.id) or session.get(cls, item.id)
                if row is None:
                    row = cls(id=item.id, position=next_position)
                    next_position += 1
                    session.add(row)
                pending[item.id] = row
                row.apply(item)
        logger.debug("record_store.put kind=%s count=%d", kind.value, len(items))
        return len(items)

    def delete(self, kind: EntityKind, item_id: str) -> bool:
        """Remove ``item_id``; a missing id is a no-op and returns ``False``."""
        kind = EntityKind(kind)
        cls = record_class(kind)
        with self._transaction("delete", kind.value) as session:
            result = session.execute(delete(cls).where(cls.id == item_id))
            removed = (result.rowcount or 0) > 0
        if removed:
            logger.debug("record_store.delete kind=%s id=%s", kind.value, item_id)
        else:
            logger.debug("record_store.delete_missing kind=%s id=%s", kind.value, item_id)
        return removed

    def clear(self) -> None:
        """Empty every collection in one transaction. Used by restore only."""
        with self._transaction("clear", "all") as session:
            for kind in EntityKind:
                session.execute(delete(record_class(kind)))
        logger.info("record_store.cleared")
