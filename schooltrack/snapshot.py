"""Whole-store snapshot document: export, JSON codec and destructive restore."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
import json
import logging

from .entities import (
    AttendanceRecord,
    EntityKind,
    Incident,
    Route,
    Stop,
    Student,
    entity_class,
)
from .errors import MalformedSnapshot

logger = logging.getLogger(__name__)

GENERATED_AT_KEY = "generatedAt"
SNAPSHOT_KEYS = tuple(kind.value for kind in EntityKind) + (GENERATED_AT_KEY,)


def format_generated_at(moment: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


@dataclass
class Snapshot:
    routes: list[Route] = field(default_factory=list)
    stops: list[Stop] = field(default_factory=list)
    students: list[Student] = field(default_factory=list)
    attendance: list[AttendanceRecord] = field(default_factory=list)
    incidents: list[Incident] = field(default_factory=list)
    generated_at: str = field(default_factory=format_generated_at)

    def collection(self, kind: EntityKind) -> list[Any]:
        return getattr(self, EntityKind(kind).value)

    def counts(self) -> dict[str, int]:
        return {kind.value: len(self.collection(kind)) for kind in EntityKind}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            kind.value: [item.to_dict() for item in self.collection(kind)]
            for kind in EntityKind
        }
        out[GENERATED_AT_KEY] = self.generated_at
        return out

    @classmethod
    def from_dict(cls, doc: Any) -> "Snapshot":
        """Validate ``doc`` and build typed collections.

        Raises :class:`MalformedSnapshot` naming the first offending key or row.
        """
        if not isinstance(doc, Mapping):
            raise MalformedSnapshot("Snapshot document must be a JSON object")

        missing = [key for key in SNAPSHOT_KEYS if key not in doc]
        if missing:
            raise MalformedSnapshot(f"Snapshot is missing keys: {', '.join(missing)}")
        extra = sorted(set(doc) - set(SNAPSHOT_KEYS))
        if extra:
            logger.warning("snapshot.extra_keys_ignored keys=%s", ",".join(map(str, extra)))

        generated_at = doc[GENERATED_AT_KEY]
        if not isinstance(generated_at, str):
            raise MalformedSnapshot(f"{GENERATED_AT_KEY} must be a string")

        collections: dict[str, list[Any]] = {}
        for kind in EntityKind:
            rows = doc[kind.value]
            if not isinstance(rows, list):
                raise MalformedSnapshot(f"{kind.value} must be an array")
            parser = entity_class(kind).from_dict
            parsed = []
            for idx, row in enumerate(rows):
                if not isinstance(row, Mapping):
                    raise MalformedSnapshot(f"{kind.value}[{idx}] must be an object")
                try:
                    parsed.append(parser(row))
                except KeyError as exc:
                    raise MalformedSnapshot(
                        f"{kind.value}[{idx}] is missing field {exc.args[0]!r}"
                    ) from exc
                except (TypeError, ValueError) as exc:
                    raise MalformedSnapshot(f"{kind.value}[{idx}]: {exc}") from exc
            collections[kind.value] = parsed

        return cls(generated_at=generated_at, **collections)


def dumps(snapshot: Snapshot) -> str:
    """Serialize with two-space indentation, non-ASCII kept verbatim."""
    return json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False)


def loads(text: str | bytes) -> Snapshot:
    try:
        doc = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedSnapshot(f"Snapshot is not valid JSON: {exc}") from exc
    return Snapshot.from_dict(doc)


def coerce_snapshot(doc: Snapshot | Mapping[str, Any] | str | bytes) -> Snapshot:
    """Accept a :class:`Snapshot`, a decoded mapping or raw JSON text."""
    if isinstance(doc, Snapshot):
        return doc
    if isinstance(doc, (str, bytes, bytearray)):
        return loads(doc)
    return Snapshot.from_dict(doc)


def export_snapshot(store, *, now: Optional[datetime] = None) -> Snapshot:
    """Capture every collection of ``store`` with one ``get_all`` per kind."""
    collections = {kind.value: store.get_all(kind) for kind in EntityKind}
    snapshot = Snapshot(generated_at=format_generated_at(now), **collections)
    logger.info("snapshot.exported counts=%s", snapshot.counts())
    return snapshot


def restore_snapshot(store, snapshot: Snapshot) -> dict[str, int]:
    """Replace the whole store with ``snapshot``. Ids are kept verbatim.

    Destructive: local rows written after the snapshot was produced are lost.
    """
    store.clear()
    restored: dict[str, int] = {}
    for kind in EntityKind:
        restored[kind.value] = store.put_many(kind, snapshot.collection(kind))
    logger.info(
        "snapshot.restored generated_at=%s counts=%s", snapshot.generated_at, restored
    )
    return restored
