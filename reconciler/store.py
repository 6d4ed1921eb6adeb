"""Store interface consumed by the reconciler, plus an in-memory store.

The reconciler only needs a small document-store contract: single-document
get/delete, a filtered query and a bounded atomic batch write that reports
per-id success. ``MemoryStore`` implements it over plain dicts and can load
and save a JSON snapshot, which is what the CLI and the tests use.

Callers must serialize purge/import runs against the same dataset; neither
the store nor the executor detects concurrent writers.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from reconciler import Operation

log = logging.getLogger(__name__)

EVENTS = 'events'
CLUBS = 'clubs'
ZONES = 'zones'
EVENT_TYPES = 'event-types'
COLLECTIONS: tuple[str, ...] = (EVENTS, CLUBS, ZONES, EVENT_TYPES)


@dataclass
class BatchOutcome:
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class Store(Protocol):
    max_batch_size: int | None

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    def query(self, collection: str, filter: dict[str, Any] | None = None) -> list[dict[str, Any]]: ...

    def batch_write(self, ops: list[Operation]) -> BatchOutcome: ...

    def delete(self, collection: str, doc_id: str) -> bool: ...


class MemoryStore:
    """Dict-backed document store.

    Args:
        data: Initial contents, ``{collection: [documents]}``; every document
            needs an ``id``.
        max_batch_size: Largest batch accepted by ``batch_write``.
    """

    def __init__(
        self,
        data: dict[str, list[dict[str, Any]]] | None = None,
        max_batch_size: int | None = 500,
    ) -> None:
        self.max_batch_size = max_batch_size
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        for collection, docs in (data or {}).items():
            self._collections[collection] = {str(d['id']): dict(d) for d in docs}

    @classmethod
    def load(cls, path: str | Path, max_batch_size: int | None = 500) -> 'MemoryStore':
        """Load a JSON snapshot written by ``save``."""
        path = Path(path)
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        store = cls(data, max_batch_size=max_batch_size)
        log.info("Datenbestand geladen aus %s (%d Events)", path, store.count(EVENTS))
        return store

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = {name: list(docs.values()) for name, docs in self._collections.items()}
        path.write_text(json.dumps(snapshot, indent=2, ensure_ascii=False), encoding='utf-8')
        log.info("Datenbestand gespeichert: %s", path)

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._collections.get(collection, {}).get(doc_id)
        return dict(doc) if doc is not None else None

    def query(self, collection: str, filter: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Return documents whose fields equal every key/value in ``filter``."""
        docs = self._collections.get(collection, {}).values()
        if filter:
            docs = [d for d in docs if all(d.get(k) == v for k, v in filter.items())]
        return [dict(d) for d in docs]

    def delete(self, collection: str, doc_id: str) -> bool:
        return self._collections.get(collection, {}).pop(doc_id, None) is not None

    def batch_write(self, ops: list[Operation]) -> BatchOutcome:
        """Apply a batch of set/delete operations.

        Deleting a document that does not exist reports its id as failed.

        Raises:
            ValueError: If the batch exceeds ``max_batch_size``.
        """
        if self.max_batch_size is not None and len(ops) > self.max_batch_size:
            raise ValueError(
                f"Batch mit {len(ops)} Operationen ueberschreitet Limit {self.max_batch_size}"
            )
        outcome = BatchOutcome()
        for op in ops:
            docs = self._collections.setdefault(op.collection, {})
            if op.action == 'set':
                docs[op.doc_id] = dict(op.data or {}, id=op.doc_id)
                outcome.succeeded.append(op.doc_id)
            elif docs.pop(op.doc_id, None) is not None:
                outcome.succeeded.append(op.doc_id)
            else:
                outcome.failed.append(op.doc_id)
        return outcome
