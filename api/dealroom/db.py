"""Flat-file persistence: one JSON array per file.

Read-modify-write cycles must run inside ``transaction()``. The lock is
per file path and shared by every store instance in the process, so the
threadpool that serves sync FastAPI routes cannot interleave two writers
on the same file. Separate processes are not coordinated.
"""

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Type, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import StorageError

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

_locks: Dict[str, threading.RLock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.RLock()
        return lock


class JsonFileStore:
    def __init__(self, path: Path, label: str):
        self.path = Path(path)
        self.label = label
        self._lock = _lock_for(self.path)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield

    def ensure_exists(self) -> None:
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.write([])

    def read(self) -> List[Dict[str, Any]]:
        with self._lock:
            self.ensure_exists()
            try:
                with self.path.open("r", encoding="utf-8") as fh:
                    items = json.load(fh)
            except (OSError, ValueError) as exc:
                logger.error("json_store_read_failed", path=str(self.path), error=str(exc))
                raise StorageError(f"Failed to read {self.label} data") from exc
        if not isinstance(items, list):
            logger.error("json_store_not_a_list", path=str(self.path))
            raise StorageError(f"Failed to read {self.label} data")
        return items

    def write(self, items: List[Dict[str, Any]]) -> None:
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        json.dump(items, fh, indent=2)
                    os.replace(tmp_name, self.path)
                except BaseException:
                    if os.path.exists(tmp_name):
                        os.unlink(tmp_name)
                    raise
            except OSError as exc:
                logger.error("json_store_write_failed", path=str(self.path), error=str(exc))
                raise StorageError(f"Failed to save {self.label} data") from exc


def parse_records(model: Type[M], items: List[Dict[str, Any]], label: str) -> List[M]:
    try:
        return [model.model_validate(item) for item in items]
    except PydanticValidationError as exc:
        logger.error("stored_record_invalid", label=label, error=str(exc))
        raise StorageError(f"Failed to read {label} data") from exc


def dump_records(records: List[BaseModel]) -> List[Dict[str, Any]]:
    return [record.model_dump(mode="json", by_alias=True) for record in records]
