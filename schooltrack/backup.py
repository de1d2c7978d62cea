"""Deliver snapshot documents to a local file and a remote object store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional
import json
import logging
import secrets
import threading

import requests

from .config import DEFAULT_UPLOAD_TIMEOUT, DEFAULT_UPLOAD_URL
from .errors import BackupInProgress, RemoteUploadFailure
from .snapshot import Snapshot, dumps

logger = logging.getLogger(__name__)

BACKUP_MIME_TYPE = "application/json"


def backup_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"schooltrack_backup_{now.date().isoformat()}.json"


class LocalDelivery:
    """Writes backup documents into ``directory``."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def deliver(self, name: str, content: str) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.directory / name
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        try:
            tmp_path.write_text(content, encoding="utf-8")
            tmp_path.replace(target)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        logger.info("backup.local_saved path=%s bytes=%d", target, len(content.encode("utf-8")))
        return target


def build_multipart_body(metadata: dict[str, Any], content: str, boundary: str) -> str:
    """``multipart/related`` body: a JSON metadata part then the JSON content part."""
    delimiter = f"\r\n--{boundary}\r\n"
    close_delim = f"\r\n--{boundary}--"
    return (
        delimiter
        + f"Content-Type: {BACKUP_MIME_TYPE}\r\n\r\n"
        + json.dumps(metadata)
        + delimiter
        + f"Content-Type: {BACKUP_MIME_TYPE}\r\n\r\n"
        + content
        + close_delim
    )


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return resp.reason or f"HTTP {resp.status_code}"


class DriveUploader:
    """Single-attempt multipart upload authenticated with a bearer token."""

    def __init__(
        self,
        access_token: str,
        *,
        url: str = DEFAULT_UPLOAD_URL,
        timeout: float = DEFAULT_UPLOAD_TIMEOUT,
        session: Optional[requests.Session] = None,
        boundary_factory: Callable[[], str] = lambda: secrets.token_hex(16),
    ):
        if not access_token:
            raise ValueError("access_token must be a non-empty string")
        self.access_token = access_token
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._boundary_factory = boundary_factory

    def upload(self, name: str, content: str) -> dict[str, Any]:
        """POST ``content`` as ``name``; return the created file resource."""
        boundary = f"-------{self._boundary_factory()}"
        body = build_multipart_body({"name": name, "mimeType": BACKUP_MIME_TYPE}, content, boundary)
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": f"multipart/related; boundary={boundary}",
        }
        logger.info("backup.remote_upload_started name=%s url=%s", name, self.url)
        try:
            resp = self.session.post(
                self.url, data=body.encode("utf-8"), headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise RemoteUploadFailure(str(exc)) from exc

        if not 200 <= resp.status_code < 300:
            raise RemoteUploadFailure(_error_message(resp), status_code=resp.status_code)

        try:
            result = resp.json()
        except ValueError as exc:
            raise RemoteUploadFailure(
                "response was not JSON", status_code=resp.status_code
            ) from exc
        if not isinstance(result, dict) or not result.get("id"):
            raise RemoteUploadFailure(
                "response did not include a file id", status_code=resp.status_code
            )
        logger.info("backup.remote_uploaded name=%s file_id=%s", name, result.get("id"))
        return result


@dataclass
class BackupResult:
    file_name: str
    local_path: Optional[Path] = None
    local_error: Optional[str] = None
    remote_file: Optional[dict[str, Any]] = None
    remote_error: Optional[str] = None
    remote_skipped: bool = False

    @property
    def ok(self) -> bool:
        """A local copy exists, whatever happened remotely."""
        return self.local_path is not None

    @property
    def partial(self) -> bool:
        return self.ok and self.remote_file is None

    @property
    def remote_file_id(self) -> Optional[str]:
        return (self.remote_file or {}).get("id")

    def messages(self) -> list[str]:
        out = []
        if self.local_error:
            out.append(f"local backup failed: {self.local_error}")
        if self.remote_error:
            out.append(f"remote backup failed: {self.remote_error}")
        elif self.remote_skipped:
            out.append("remote backup skipped: no access token")
        return out


class BackupService:
    """Runs the local leg, then the remote leg, independently of each other.

    A second call while one is in flight raises :class:`BackupInProgress`.
    """

    def __init__(
        self,
        export: Callable[[], Snapshot],
        local: LocalDelivery,
        *,
        uploader_factory: Callable[[str], DriveUploader] = DriveUploader,
    ):
        self._export = export
        self.local = local
        self._uploader_factory = uploader_factory
        self._lock = threading.Lock()

    def _document(self) -> tuple[str, str]:
        snapshot = self._export()
        return backup_filename(), dumps(snapshot)

    def backup_local(self) -> Path:
        name, content = self._document()
        return self.local.deliver(name, content)

    def backup_remote(self, access_token: str) -> dict[str, Any]:
        name, content = self._document()
        return self._uploader_factory(access_token).upload(name, content)

    def perform_backup(self, access_token: Optional[str] = None) -> BackupResult:
        if not self._lock.acquire(blocking=False):
            raise BackupInProgress("A backup is already running")
        try:
            name, content = self._document()
            result = BackupResult(file_name=name)

            try:
                result.local_path = self.local.deliver(name, content)
            except OSError as exc:
                result.local_error = str(exc)
                logger.error("backup.local_failed name=%s error=%s", name, exc)

            if not access_token:
                result.remote_skipped = True
                logger.warning("backup.remote_skipped reason=no_access_token")
            else:
                try:
                    result.remote_file = self._uploader_factory(access_token).upload(
                        name, content
                    )
                except RemoteUploadFailure as exc:
                    result.remote_error = str(exc)
                    logger.error("backup.remote_failed name=%s error=%s", name, exc)
            return result
        finally:
            self._lock.release()
