import logging

import pytest

from schooltrack.entities import (
    AttendanceRecord,
    AttendanceStatus,
    EntityKind,
    Incident,
    Route,
    Stop,
    Student,
)
from schooltrack.errors import NotFound, StorageFailure
from schooltrack.persistence import RecordStore, RouteRecord


def _mark(student_id, day, status, ts=1):
    return AttendanceRecord.mark(student_id, day, status, ts)


def test_get_all_returns_insertion_order_and_overwrite_keeps_position():
    store = RecordStore.in_memory()
    store.put(EntityKind.ROUTES, Route(id="r-b", name="Bravo"))
    store.put(EntityKind.ROUTES, Route(id="r-a", name="Alpha"))
    store.put(EntityKind.ROUTES, Route(id="r-c", name="Charlie"))

    store.put(EntityKind.ROUTES, Route(id="r-b", name="Bravo renamed", description="north"))

    routes = store.get_all(EntityKind.ROUTES)
    assert [r.id for r in routes] == ["r-b", "r-a", "r-c"]
    assert routes[0] == Route(id="r-b", name="Bravo renamed", description="north")


def test_put_is_full_replacement_not_patch():
    store = RecordStore.in_memory()
    store.put(
        EntityKind.STUDENTS,
        Student(id="s1", stop_id="p1", name="Ana", guardian_name="Maria", contact="555"),
    )
    store.put(EntityKind.STUDENTS, Student(id="s1", stop_id="p2", name="Ana"))

    stored = store.get(EntityKind.STUDENTS, "s1")
    assert stored.stop_id == "p2"
    assert stored.guardian_name is None
    assert stored.contact is None


def test_delete_missing_id_is_a_noop(caplog):
    store = RecordStore.in_memory()
    store.put(EntityKind.STOPS, Stop(id="p1", route_id="r1", name="Gate", order=0))

    with caplog.at_level(logging.DEBUG, logger="schooltrack.persistence.sqlalchemy_store"):
        assert store.delete(EntityKind.STOPS, "nope") is False

    assert store.delete(EntityKind.STOPS, "p1") is True
    assert store.get_all(EntityKind.STOPS) == []
    assert any("record_store.delete_missing" in rec.getMessage() for rec in caplog.records)


def test_get_missing_raises_not_found_unless_default_given():
    store = RecordStore.in_memory()

    with pytest.raises(NotFound, match="routes has no item with id 'ghost'"):
        store.get(EntityKind.ROUTES, "ghost")
    assert store.get(EntityKind.ROUTES, "ghost", None) is None


def test_attendance_composite_key_keeps_latest_status():
    store = RecordStore.in_memory()
    store.put(EntityKind.ATTENDANCE, _mark("s1", "2024-05-10", AttendanceStatus.PRESENT, 1))
    store.put(EntityKind.ATTENDANCE, _mark("s1", "2024-05-10", AttendanceStatus.ABSENT, 2))

    records = store.get_all(EntityKind.ATTENDANCE)
    assert len(records) == 1
    assert records[0].id == "2024-05-10_s1"
    assert records[0].status is AttendanceStatus.ABSENT
    assert records[0].timestamp == 2


def test_attendance_secondary_lookups():
    store = RecordStore.in_memory()
    store.put_many(
        EntityKind.ATTENDANCE,
        [
            _mark("s1", "2024-05-10", "PRESENT"),
            _mark("s2", "2024-05-10", "ABSENT"),
            _mark("s1", "2024-05-11", "ABSENT"),
        ],
    )

    assert [r.student_id for r in store.attendance_by_date("2024-05-10")] == ["s1", "s2"]
    assert [r.date for r in store.attendance_by_student("s1")] == ["2024-05-10", "2024-05-11"]
    assert store.attendance_by_date("2024-06-01") == []


def test_put_many_with_repeated_id_in_one_batch_keeps_last():
    store = RecordStore.in_memory()
    store.put_many(
        EntityKind.ROUTES,
        [Route(id="r1", name="first"), Route(id="r2", name="other"), Route(id="r1", name="second")],
    )

    routes = store.get_all(EntityKind.ROUTES)
    assert [(r.id, r.name) for r in routes] == [("r1", "second"), ("r2", "other")]


def test_put_rejects_entity_of_the_wrong_kind():
    store = RecordStore.in_memory()

    with pytest.raises(TypeError, match="stops expects Stop"):
        store.put(EntityKind.STOPS, Route(id="r1", name="R1"))


def test_clear_empties_every_collection():
    store = RecordStore.in_memory()
    store.put(EntityKind.ROUTES, Route(id="r1", name="R1"))
    store.put(EntityKind.STOPS, Stop(id="p1", route_id="r1", name="P1"))
    store.put(EntityKind.STUDENTS, Student(id="s1", stop_id="p1", name="Ana"))
    store.put(EntityKind.ATTENDANCE, _mark("s1", "2024-05-10", "PRESENT"))
    store.put(
        EntityKind.INCIDENTS,
        Incident(
            id="i1",
            student_id="s1",
            type="General",
            observation="late",
            date="2024-05-10T08:00:00.000Z",
            timestamp=1,
        ),
    )

    store.clear()

    for kind in EntityKind:
        assert store.count(kind) == 0


def test_file_store_persists_across_reopen(tmp_path):
    path = tmp_path / "nested" / "records.sqlite"
    store = RecordStore.from_url(f"sqlite:///{path}")
    store.put(EntityKind.ROUTES, Route(id="r1", name="Russier-Varelinha"))
    store.dispose()

    reopened = RecordStore.from_url(f"sqlite:///{path}")
    assert reopened.get_all(EntityKind.ROUTES) == [Route(id="r1", name="Russier-Varelinha")]
    reopened.dispose()


def test_corrupt_database_surfaces_storage_failure(tmp_path):
    invalid = tmp_path / "invalid.sqlite"
    invalid.write_text("not a sqlite database", encoding="utf-8")

    with pytest.raises(StorageFailure, match="Failed creating schema"):
        RecordStore.from_url(f"sqlite:///{invalid}")


def test_driver_errors_on_reads_and_writes_surface_as_storage_failure(caplog):
    store = RecordStore.in_memory()
    store.put(EntityKind.ROUTES, Route(id="r1", name="R1"))
    store.put(EntityKind.STOPS, Stop(id="p1", route_id="r1", name="P1"))
    RouteRecord.__table__.drop(store.engine)

    with caplog.at_level(logging.ERROR, logger="schooltrack.persistence.sqlalchemy_store"):
        with pytest.raises(StorageFailure, match="Failed to write routes"):
            store.put(EntityKind.ROUTES, Route(id="r2", name="R2"))
        with pytest.raises(StorageFailure, match="Failed to read routes"):
            store.get_all(EntityKind.ROUTES)
        with pytest.raises(StorageFailure, match="Failed to delete routes"):
            store.delete(EntityKind.ROUTES, "r1")
        with pytest.raises(StorageFailure, match="Failed to clear all"):
            store.clear()

    assert any("record_store.write_failed" in rec.getMessage() for rec in caplog.records)
    # other collections are unaffected
    assert [s.id for s in store.get_all(EntityKind.STOPS)] == ["p1"]
