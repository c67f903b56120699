"""Blob storage for serialized transition models.

The store treats models as opaque byte payloads keyed by an integer id. Two
implementations share the ``ModelStore`` interface:

- ``SQLiteModelStore``: persistent, one connection per operation so it can be
  called from any worker thread
- ``InMemoryModelStore``: process-local, used by tests and scratch runs
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from endless.errors import ModelNotFoundError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS transition_model (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    model_data BLOB NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_transition_model_created
    ON transition_model (created_at DESC, id DESC);
"""


@dataclass(frozen=True)
class ModelRecord:
    """Identity of a stored model."""

    id: int
    created_at: datetime


@dataclass(frozen=True)
class StoredModel:
    """A stored model together with its serialized bytes."""

    id: int
    data: bytes
    created_at: datetime

    @property
    def record(self) -> ModelRecord:
        return ModelRecord(id=self.id, created_at=self.created_at)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ModelStore(ABC):
    """Interface of the model blob store.

    ``write_lock`` serializes read-modify-write sequences (get, change,
    update) within this process. Single operations do not take it.
    """

    def __init__(self) -> None:
        self.write_lock = threading.Lock()

    @abstractmethod
    def save_model(self, data: bytes) -> ModelRecord:
        """Store a new model blob and return its id and timestamp."""

    @abstractmethod
    def get_model(self, model_id: int) -> bytes:
        """Return the blob for ``model_id``.

        Raises:
            ModelNotFoundError: If no such model exists
        """

    @abstractmethod
    def list_recent_models(self, limit: int) -> List[StoredModel]:
        """Return up to ``limit`` models, newest first."""

    @abstractmethod
    def update_model(self, model_id: int, data: bytes) -> ModelRecord:
        """Replace the blob of ``model_id`` and refresh its timestamp.

        Raises:
            ModelNotFoundError: If no such model exists
        """

    def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryModelStore(ModelStore):
    """Thread-safe dictionary-backed store."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        super().__init__()
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._models: Dict[int, StoredModel] = {}
        # Write sequence per id, breaks created_at ties
        self._sequence: Dict[int, int] = {}
        self._next_id = 1
        self._next_sequence = 0

    def save_model(self, data: bytes) -> ModelRecord:
        with self._lock:
            model = StoredModel(id=self._next_id, data=bytes(data), created_at=self._clock())
            self._next_id += 1
            self._commit(model)
        return model.record

    def get_model(self, model_id: int) -> bytes:
        with self._lock:
            model = self._models.get(model_id)
        if model is None:
            raise ModelNotFoundError(f"Model {model_id} not found")
        return model.data

    def list_recent_models(self, limit: int) -> List[StoredModel]:
        with self._lock:
            models = sorted(
                self._models.values(),
                key=lambda m: (m.created_at, self._sequence[m.id]),
                reverse=True,
            )
        return models[:max(limit, 0)]

    def update_model(self, model_id: int, data: bytes) -> ModelRecord:
        with self._lock:
            if model_id not in self._models:
                raise ModelNotFoundError(f"Model {model_id} not found")
            model = StoredModel(id=model_id, data=bytes(data), created_at=self._clock())
            self._commit(model)
        return model.record

    def _commit(self, model: StoredModel) -> None:
        self._models[model.id] = model
        self._sequence[model.id] = self._next_sequence
        self._next_sequence += 1


class SQLiteModelStore(ModelStore):
    """SQLite-backed store, one row per model in ``transition_model``."""

    def __init__(
        self,
        db_path: Union[str, Path],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Open (and create if needed) the database at ``db_path``.

        Args:
            db_path: Path to the SQLite file. Parent directories are created.
            clock: Timestamp source, UTC ``datetime.now`` by default
        """
        super().__init__()
        self.db_path = Path(db_path)
        self._clock = clock or _utc_now
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.executescript(SCHEMA)
        logger.info(f"Model store ready at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=30)

    def _timestamp(self) -> str:
        return self._clock().astimezone(timezone.utc).isoformat(timespec="microseconds")

    def save_model(self, data: bytes) -> ModelRecord:
        created_at = self._timestamp()
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                "INSERT INTO transition_model (model_data, created_at) VALUES (?, ?)",
                (sqlite3.Binary(data), created_at),
            )
            model_id = cursor.lastrowid
        logger.info(f"Saved model {model_id} ({len(data):,} bytes)")
        return ModelRecord(id=model_id, created_at=datetime.fromisoformat(created_at))

    def get_model(self, model_id: int) -> bytes:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT model_data FROM transition_model WHERE id = ?", (model_id,)
            ).fetchone()
        if row is None:
            raise ModelNotFoundError(f"Model {model_id} not found")
        return bytes(row[0])

    def list_recent_models(self, limit: int) -> List[StoredModel]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT id, model_data, created_at FROM transition_model "
                "ORDER BY created_at DESC, id DESC LIMIT ?",
                (max(limit, 0),),
            ).fetchall()
        return [
            StoredModel(id=row[0], data=bytes(row[1]), created_at=datetime.fromisoformat(row[2]))
            for row in rows
        ]

    def update_model(self, model_id: int, data: bytes) -> ModelRecord:
        created_at = self._timestamp()
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                "UPDATE transition_model SET model_data = ?, created_at = ? WHERE id = ?",
                (sqlite3.Binary(data), created_at, model_id),
            )
            if cursor.rowcount == 0:
                raise ModelNotFoundError(f"Model {model_id} not found")
        logger.info(f"Updated model {model_id} ({len(data):,} bytes)")
        return ModelRecord(id=model_id, created_at=datetime.fromisoformat(created_at))
