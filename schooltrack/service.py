"""Entry point used by UI and report collaborators."""

from __future__ import annotations

from functools import partial
from pathlib import Path
from typing import Any, Mapping, Optional

import requests

from .backup import BackupResult, BackupService, DriveUploader, LocalDelivery
from .config import Settings, load_config
from .entities import AttendanceRecord, Incident, Route, Stop, Student
from .persistence import RecordStore
from .reports import RouteReport, compute_monthly_report
from .repository import TransportRepository
from .snapshot import Snapshot, coerce_snapshot, restore_snapshot


class TransportService:
    """Repository, report engine, snapshot codec and backup transport behind one object."""

    def __init__(
        self,
        store: RecordStore,
        *,
        settings: Optional[Settings] = None,
        http_session: Optional[requests.Session] = None,
    ):
        self.settings = settings or Settings()
        self.store = store
        self.repository = TransportRepository(store)
        uploader = partial(
            DriveUploader,
            url=self.settings.upload_url,
            timeout=self.settings.upload_timeout,
            session=http_session,
        )
        self.backups = BackupService(
            self.export_snapshot,
            LocalDelivery(self.settings.backup_dir),
            uploader_factory=uploader,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "TransportService":
        settings = settings or load_config()
        return cls(RecordStore.from_url(settings.database_url), settings=settings, **kwargs)

    def close(self) -> None:
        self.store.dispose()

    # Listing ---------------------------------------------------------------

    def list_routes(self) -> list[Route]:
        return self.repository.list_routes()

    def list_stops(self) -> list[Stop]:
        return self.repository.list_stops()

    def list_students(self) -> list[Student]:
        return self.repository.list_students()

    def list_attendance(self) -> list[AttendanceRecord]:
        return self.repository.list_attendance()

    def list_incidents(self) -> list[Incident]:
        return self.repository.list_incidents()

    # Saving ----------------------------------------------------------------

    def save_route(self, route: Route) -> Route:
        return self.repository.save_route(route)

    def save_stop(self, stop: Stop) -> Stop:
        return self.repository.save_stop(stop)

    def save_student(self, student: Student) -> Student:
        return self.repository.save_student(student)

    def save_attendance(self, record: AttendanceRecord) -> AttendanceRecord:
        return self.repository.save_attendance(record)

    def save_incident(self, incident: Incident) -> Incident:
        return self.repository.save_incident(incident)

    # Deleting --------------------------------------------------------------

    def delete_route(self, route_id: str) -> bool:
        return self.repository.delete_route(route_id)

    def delete_stop(self, stop_id: str) -> bool:
        return self.repository.delete_stop(stop_id)

    def delete_student(self, student_id: str) -> bool:
        return self.repository.delete_student(student_id)

    def delete_attendance(self, record_id: str) -> bool:
        return self.repository.delete_attendance(record_id)

    def delete_incident(self, incident_id: str) -> bool:
        return self.repository.delete_incident(incident_id)

    # Reports, snapshots, backups --------------------------------------------

    def compute_monthly_report(self, month: str) -> dict[str, RouteReport]:
        return compute_monthly_report(month, **self.repository.collections())

    def export_snapshot(self) -> Snapshot:
        return self.repository.export_all_data()

    def restore_snapshot(self, doc: Snapshot | Mapping[str, Any] | str | bytes) -> dict[str, int]:
        # Validate fully before clearing anything
        snapshot = coerce_snapshot(doc)
        return restore_snapshot(self.store, snapshot)

    def backup_local(self) -> Path:
        return self.backups.backup_local()

    def backup_remote(self, credential: str) -> dict[str, Any]:
        return self.backups.backup_remote(credential)

    def perform_backup(self, credential: Optional[str] = None) -> BackupResult:
        return self.backups.perform_backup(credential)
