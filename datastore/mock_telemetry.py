from __future__ import annotations

import copy
import json
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Set

from models.records import (
    Collection,
    RawDocument,
    document_sensor_id,
    document_timestamp,
)
from settings import get_settings


class StoreUnavailableError(RuntimeError):
    """Raised when the telemetry store cannot serve a query."""


def _json_ready(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _json_ready(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_ready(item) for item in value]
    return value


class MockTelemetryStore:
    """Collection-style document store with optional JSON persistence.

    Documents are kept as plain dicts exactly as ingestion wrote them, so the
    field spellings of different writers survive. Queries sort newest first
    by the document's ``created_at`` or ``timestamp`` field; documents without
    a usable timestamp sort last.
    """

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self._collections: Dict[Collection, List[RawDocument]] = {
            collection: [] for collection in Collection
        }
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def insert(self, collection: Collection, document: RawDocument) -> None:
        with self._lock:
            self._collections[collection].append(_json_ready(document))
            self._persist()

    def insert_many(self, collection: Collection, documents: List[RawDocument]) -> None:
        with self._lock:
            self._collections[collection].extend(_json_ready(doc) for doc in documents)
            self._persist()

    def find(
        self,
        collection: Collection,
        sensor_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[RawDocument]:
        """Return deep copies of matching documents, newest first."""
        with self._lock:
            documents = list(self._collections[collection])

        if sensor_id is not None:
            documents = [doc for doc in documents if document_sensor_id(doc) == sensor_id]
        if since is not None:
            documents = [
                doc
                for doc in documents
                if (stamp := document_timestamp(doc)) is not None and stamp >= since
            ]

        documents.sort(key=self._sort_key, reverse=True)
        if limit is not None:
            documents = documents[:limit]
        return [copy.deepcopy(doc) for doc in documents]

    def distinct_sensor_ids(self, collection: Collection) -> Set[str]:
        with self._lock:
            documents = list(self._collections[collection])
        return {
            sensor_id
            for sensor_id in (document_sensor_id(doc) for doc in documents)
            if sensor_id is not None
        }

    def count(self, collection: Collection, since: Optional[datetime] = None) -> int:
        if since is None:
            with self._lock:
                return len(self._collections[collection])
        return len(self.find(collection, since=since))

    def data_size(self) -> int:
        """Approximate stored size in bytes of the serialized collections."""
        with self._lock:
            return len(json.dumps(self._payload()).encode("utf-8"))

    def ping(self) -> bool:
        if self.persistence_path is None:
            return True
        return self.persistence_path.parent.is_dir()

    @staticmethod
    def _sort_key(document: RawDocument) -> float:
        stamp = document_timestamp(document)
        return stamp.timestamp() if stamp is not None else float("-inf")

    def _payload(self) -> Dict[str, List[RawDocument]]:
        return {
            collection.value: documents
            for collection, documents in self._collections.items()
        }

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        self.persistence_path.write_text(json.dumps(self._payload(), indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for collection in Collection:
            documents = data.get(collection.value) or []
            self._collections[collection] = [doc for doc in documents if isinstance(doc, dict)]


@lru_cache
def build_default_store(path: Optional[str] = None) -> MockTelemetryStore:
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return MockTelemetryStore(persistence_path=persistence)
