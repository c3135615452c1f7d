"""JSON file implementation of the state store."""

from __future__ import annotations

import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, Field, ValidationError

from leasekeeper.base.config import DEFAULT_STORE_PATH
from leasekeeper.base.exceptions import RecordNotFoundError, StoreError
from leasekeeper.base.record import InstanceRecord, utcnow
from leasekeeper.base.store import StoreBlueprint, keep_latest_lease


class _Entry(BaseModel):
    instance: InstanceRecord
    created_at: datetime
    updated_at: datetime


class _Document(BaseModel):
    instances: dict[str, _Entry] = Field(default_factory=dict)
    updated_at: datetime | None = None


class FileStore(StoreBlueprint):
    """Store records in a single JSON document.

    Every operation reloads the file, so separate processes (the CLI and a
    running ``leasekeeper service``) see each other's writes.  Writes go to
    a temporary file that atomically replaces the document.

    Attributes:
        path: Location of the JSON document.
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self.path = Path(path) if path else DEFAULT_STORE_PATH
        self._lock = threading.RLock()

    def list_all(self) -> list[InstanceRecord]:
        with self._lock:
            return [entry.instance for entry in self._load().instances.values()]

    def get(self, instance_id: str) -> InstanceRecord:
        with self._lock:
            entry = self._load().instances.get(instance_id)
        if entry is None:
            raise RecordNotFoundError(f"Instance '{instance_id}' not found in {self.path}")
        return entry.instance

    def save(self, record: InstanceRecord) -> InstanceRecord:
        with self._lock:
            doc = self._load()
            return self._put(doc, keep_latest_lease(self._current(doc, record.id), record))

    def update(
        self,
        instance_id: str,
        fn: Callable[[InstanceRecord], InstanceRecord],
    ) -> InstanceRecord:
        with self._lock:
            doc = self._load()
            current = self._current(doc, instance_id)
            if current is None:
                raise RecordNotFoundError(f"Instance '{instance_id}' not found in {self.path}")
            return self._put(doc, fn(current))

    def delete(self, instance_id: str) -> None:
        with self._lock:
            doc = self._load()
            if doc.instances.pop(instance_id, None) is not None:
                doc.updated_at = utcnow()
                self._write(doc)

    # ── internals ─────────────────────────────────────────────────────

    @staticmethod
    def _current(doc: _Document, instance_id: str) -> InstanceRecord | None:
        entry = doc.instances.get(instance_id)
        return entry.instance if entry else None

    def _put(self, doc: _Document, record: InstanceRecord) -> InstanceRecord:
        now = utcnow()
        existing = doc.instances.get(record.id)
        doc.instances[record.id] = _Entry(
            instance=record,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        doc.updated_at = now
        self._write(doc)
        return record

    def _load(self) -> _Document:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return _Document()
        except OSError as e:
            raise StoreError(f"Failed to read store file '{self.path}'") from e
        if not raw.strip():
            return _Document()
        try:
            return _Document.model_validate_json(raw)
        except ValidationError as e:
            raise StoreError(f"Store file '{self.path}' is corrupt") from e

    def _write(self, doc: _Document) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".instances-", suffix=".json", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(doc.model_dump_json(indent=2))
                os.replace(tmp, self.path)
            except BaseException:
                os.unlink(tmp)
                raise
        except OSError as e:
            raise StoreError(f"Failed to write store file '{self.path}'") from e
