"""Chunked batch execution of store writes and deletes.

Operations are appended to a pending buffer which is committed as one
atomic batch whenever it reaches the flush threshold, and once more at the
end. Only one chunk is ever in flight. Atomicity is per chunk: if the store
becomes unreachable, chunks committed before the failure stay committed and
the result reports how many there were.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Callable

from reconciler import EventRecord, Operation, OperationConfig, OperationResult
from reconciler.errors import StoreUnavailableError, ValidationError
from reconciler.sinks import BackupSink
from reconciler.store import EVENTS, Store

log = logging.getLogger(__name__)

# Store-side ceiling for a single atomic batch
MAX_BATCH = 500
# Share of the ceiling used as flush trigger (450 of 500)
FLUSH_RATIO = 0.9


def flush_threshold(max_batch_size: int) -> int:
    """Number of buffered operations that triggers a commit."""
    return max(1, int(max_batch_size * FLUSH_RATIO))


def backup_timestamp(epoch: float) -> str:
    """File-name safe UTC timestamp, e.g. ``2025-09-15T10-30-00-123Z``."""
    moment = datetime.fromtimestamp(epoch, tz=timezone.utc)
    return moment.strftime('%Y-%m-%dT%H-%M-%S-') + f'{moment.microsecond // 1000:03d}Z'


class BatchExecutor:
    """Apply operations against a store in bounded chunks.

    Args:
        store: Store implementing ``batch_write``.
        max_batch_size: Transactional ceiling. Defaults to the store's own
            ``max_batch_size`` or ``MAX_BATCH``, and never exceeds the store's.
        backup_sink: Where pre-operation snapshots are written.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        store: Store,
        max_batch_size: int | None = None,
        backup_sink: BackupSink | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        store_limit = getattr(store, 'max_batch_size', None)
        if max_batch_size is None:
            max_batch_size = store_limit or MAX_BATCH
        elif store_limit:
            max_batch_size = min(max_batch_size, store_limit)
        if max_batch_size < 1:
            raise ValidationError(f"Ungueltige Batch-Groesse: {max_batch_size}", ['max_batch_size'])
        self.store = store
        self.max_batch_size = max_batch_size
        self.flush_at = flush_threshold(max_batch_size)
        self.backup_sink = backup_sink
        self.clock = clock

    def _create_backup(
        self,
        records: list[EventRecord],
        prefix: str,
        result: OperationResult,
    ) -> None:
        """Write a snapshot of ``records``; failures are recorded, not raised."""
        if self.backup_sink is None:
            result.errors.append("Backup fehlgeschlagen: kein Backup-Ziel konfiguriert")
            log.warning("Backup angefordert, aber kein Backup-Ziel konfiguriert")
            return
        timestamp = backup_timestamp(self.clock())
        payload: dict[str, Any] = {
            'timestamp': timestamp,
            'eventCount': len(records),
            'events': [r.to_dict() for r in records],
        }
        try:
            result.backup_created = self.backup_sink.save(f'{prefix}-{timestamp}.json', payload)
        except (OSError, ValueError, TypeError) as exc:
            result.errors.append(f"Backup fehlgeschlagen: {exc}")
            log.warning("Backup fehlgeschlagen: %s", exc)

    def _commit(self, chunk: list[Operation], result: OperationResult) -> bool:
        """Commit one chunk. Returns False if the store was unreachable."""
        try:
            outcome = self.store.batch_write(chunk)
        except StoreUnavailableError as exc:
            result.success = False
            result.errors.append(
                f"Speicher nicht erreichbar nach {result.chunks_committed}"
                f" erfolgreich geschriebenen Chunks: {exc}"
            )
            log.error(
                "Abbruch nach %d Chunks, Speicher nicht erreichbar: %s",
                result.chunks_committed, exc,
            )
            return False
        result.chunks_committed += 1

        pending: dict[str, list[Operation]] = {}
        for op in chunk:
            pending.setdefault(op.doc_id, []).append(op)

        def take(doc_id: str) -> Operation | None:
            ops = pending.get(doc_id)
            return ops.pop(0) if ops else None

        for doc_id in outcome.succeeded:
            op = take(doc_id)
            if op is not None and op.tracked:
                result.deleted_or_created += 1
                result.affected_ids.append(doc_id)
        for doc_id in outcome.failed:
            op = take(doc_id)
            verb = 'Loeschen' if op is not None and op.action == 'delete' else 'Schreiben'
            label = op.label if op is not None and op.label else doc_id
            result.errors.append(f"{verb} fehlgeschlagen: {label}")
            if op is None or op.tracked:
                result.skipped += 1

        log.info(
            "Chunk %d geschrieben: %d erfolgreich, %d fehlgeschlagen",
            result.chunks_committed, len(outcome.succeeded), len(outcome.failed),
        )
        return True

    def execute(
        self,
        operations: list[Operation],
        config: OperationConfig,
        operation: str = 'purge',
        backup_records: list[EventRecord] | None = None,
        backup_prefix: str = 'backup-before-purge',
    ) -> OperationResult:
        """Run ``operations`` against the store.

        Args:
            operations: Writes/deletes in commit order.
            config: Run options; ``dry_run`` and ``create_backup`` are used.
            operation: Name reported in the result (purge, import, rollback).
            backup_records: Records about to be mutated, snapshotted before
                the first commit when ``config.create_backup`` is set.
            backup_prefix: File-name prefix of the snapshot.

        Returns:
            OperationResult with write counts, per-item errors and chunk count.
            Matching counts, summary and elapsed time are left to the caller.
        """
        result = OperationResult(operation=operation)
        tracked = sum(1 for op in operations if op.tracked)

        if config.dry_run:
            result.deleted_or_created = tracked
            log.info(
                "Testlauf: %d Operationen in %d Chunks wuerden ausgefuehrt",
                len(operations), math.ceil(len(operations) / self.flush_at),
            )
            return result

        if config.create_backup and backup_records is not None:
            self._create_backup(backup_records, backup_prefix, result)

        buffer: list[Operation] = []
        for op in operations:
            buffer.append(op)
            if len(buffer) >= self.flush_at:
                if not self._commit(buffer, result):
                    return result
                buffer = []
        if buffer:
            self._commit(buffer, result)

        log.info(
            "Batch abgeschlossen: %d von %d Operationen erfolgreich, %d Chunks",
            result.deleted_or_created, tracked, result.chunks_committed,
        )
        return result

    def rollback(
        self,
        ids: list[str],
        collection: str = EVENTS,
        dry_run: bool = False,
    ) -> OperationResult:
        """Delete exactly the given ids, e.g. the records created by an import."""
        operations = [
            Operation(action='delete', collection=collection, doc_id=doc_id, label=doc_id)
            for doc_id in dict.fromkeys(ids)
        ]
        result = self.execute(
            operations, OperationConfig(dry_run=dry_run), operation='rollback',
        )
        result.matched_or_imported = len(operations)
        return result
