from datetime import datetime, timezone
import json
import logging

import pytest

from schooltrack.entities import (
    AttendanceRecord,
    EntityKind,
    Incident,
    Route,
    Stop,
    Student,
)
from schooltrack.errors import MalformedSnapshot
from schooltrack.persistence import RecordStore
from schooltrack.service import TransportService
from schooltrack.snapshot import (
    SNAPSHOT_KEYS,
    Snapshot,
    dumps,
    export_snapshot,
    format_generated_at,
    loads,
    restore_snapshot,
)


def _populate(store):
    store.put(EntityKind.ROUTES, Route(id="r1", name="Rota São José", description="manhã"))
    store.put(EntityKind.ROUTES, Route(id="r2", name="Rota Centro"))
    store.put(EntityKind.STOPS, Stop(id="p1", route_id="r1", name="Praça", order=0))
    store.put(
        EntityKind.STUDENTS,
        Student(id="s1", stop_id="p1", name="Ana Luísa", guardian_name="Maria", contact="555"),
    )
    store.put(EntityKind.STUDENTS, Student(id="s2", stop_id="p1", name="Beto", active=False))
    store.put(
        EntityKind.ATTENDANCE, AttendanceRecord.mark("s1", "2024-05-10", "PRESENT", 1715328000000)
    )
    store.put(
        EntityKind.INCIDENTS,
        Incident(
            id="i1",
            student_id="s1",
            type="General",
            observation="Esqueceu a mochila",
            date="2024-05-10T08:00:00.000Z",
            timestamp=1715328000000,
        ),
    )


def _valid_doc():
    return {
        "routes": [{"id": "r1", "name": "R1"}],
        "stops": [{"id": "p1", "routeId": "r1", "name": "P1", "order": 0}],
        "students": [{"id": "s1", "stopId": "p1", "name": "Ana", "active": True}],
        "attendance": [
            {
                "id": "2024-05-10_s1",
                "studentId": "s1",
                "date": "2024-05-10",
                "status": "PRESENT",
                "timestamp": 1,
            }
        ],
        "incidents": [],
        "generatedAt": "2024-05-10T12:00:00.000Z",
    }


def test_format_generated_at_uses_milliseconds_and_z():
    moment = datetime(2024, 5, 10, 12, 30, 45, 123456, tzinfo=timezone.utc)
    assert format_generated_at(moment) == "2024-05-10T12:30:45.123Z"


def test_export_then_restore_reproduces_every_collection():
    source = RecordStore.in_memory()
    _populate(source)

    snapshot = export_snapshot(source, now=datetime(2024, 5, 10, tzinfo=timezone.utc))
    target = RecordStore.in_memory()
    target.put(EntityKind.ROUTES, Route(id="stale", name="Will be dropped"))
    counts = restore_snapshot(target, loads(dumps(snapshot)))

    assert counts == {"routes": 2, "stops": 1, "students": 2, "attendance": 1, "incidents": 1}
    for kind in EntityKind:
        assert target.get_all(kind) == source.get_all(kind)


def test_document_layout_and_optional_fields():
    store = RecordStore.in_memory()
    _populate(store)

    doc = json.loads(dumps(export_snapshot(store)))

    assert set(doc) == set(SNAPSHOT_KEYS)
    assert doc["routes"][0] == {"id": "r1", "name": "Rota São José", "description": "manhã"}
    assert doc["routes"][1] == {"id": "r2", "name": "Rota Centro"}
    assert doc["students"][1] == {"id": "s2", "stopId": "p1", "name": "Beto", "active": False}
    assert doc["attendance"][0]["id"] == "2024-05-10_s1"
    assert doc["attendance"][0]["status"] == "PRESENT"


def test_dumps_keeps_non_ascii_and_round_trips_text():
    store = RecordStore.in_memory()
    _populate(store)
    text = dumps(export_snapshot(store))

    assert "São José" in text
    assert "\\u00e3" not in text
    assert text.startswith('{\n  "routes": [')
    assert dumps(loads(text)) == text


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda d: d.pop("incidents"), "missing keys: incidents"),
        (lambda d: d.update(generatedAt=123), "generatedAt must be a string"),
        (lambda d: d.update(routes={"id": "r1"}), "routes must be an array"),
        (lambda d: d["stops"].append("p2"), r"stops\[1\] must be an object"),
        (lambda d: d["students"][0].pop("stopId"), r"students\[0\] is missing field 'stopId'"),
        (lambda d: d["stops"][0].update(order="first"), r"stops\[0\]"),
        (lambda d: d["attendance"][0].update(status="LATE"), r"attendance\[0\]"),
        (lambda d: d["attendance"][0].update(date="2024-05"), r"attendance\[0\]: date must look like YYYY-MM-DD"),
    ],
)
def test_malformed_documents_are_rejected(mutate, message):
    doc = _valid_doc()
    mutate(doc)

    with pytest.raises(MalformedSnapshot, match=message):
        Snapshot.from_dict(doc)


def test_non_object_and_invalid_json_are_rejected():
    with pytest.raises(MalformedSnapshot, match="must be a JSON object"):
        Snapshot.from_dict([])
    with pytest.raises(MalformedSnapshot, match="not valid JSON"):
        loads("{not json")


def test_extra_keys_are_ignored_with_a_warning(caplog):
    doc = _valid_doc()
    doc["version"] = 2

    with caplog.at_level(logging.WARNING, logger="schooltrack.snapshot"):
        snapshot = Snapshot.from_dict(doc)

    assert snapshot.counts()["routes"] == 1
    assert any("snapshot.extra_keys_ignored" in rec.getMessage() for rec in caplog.records)


def test_failed_restore_leaves_existing_data_untouched():
    service = TransportService(RecordStore.in_memory())
    service.save_route(Route(id="keep", name="Keep me"))
    doc = _valid_doc()
    del doc["students"]

    with pytest.raises(MalformedSnapshot):
        service.restore_snapshot(doc)

    assert [r.id for r in service.list_routes()] == ["keep"]


def test_service_restore_accepts_json_text():
    service = TransportService(RecordStore.in_memory())

    counts = service.restore_snapshot(json.dumps(_valid_doc()))

    assert counts["attendance"] == 1
    assert service.list_attendance()[0].status.value == "PRESENT"


def test_restore_with_dayless_attendance_date_keeps_store_and_report_intact():
    service = TransportService(RecordStore.in_memory())
    service.restore_snapshot(_valid_doc())
    doc = _valid_doc()
    doc["attendance"][0]["date"] = "2024-05"

    with pytest.raises(MalformedSnapshot, match="attendance"):
        service.restore_snapshot(doc)

    (stats,) = service.compute_monthly_report("2024-05")["r1"].students
    assert stats.present_days == [10]
