"""Tests for reconciler.executor module."""

import pytest

from reconciler import EventRecord, Operation, OperationConfig
from reconciler.errors import ValidationError
from reconciler.executor import BatchExecutor, backup_timestamp, flush_threshold

CLOCK = 1700000000.5


def _events(n: int) -> list[dict]:
    return [{'id': f'e{i}', 'name': f'Event {i}', 'date': '2025-09-15'} for i in range(n)]


def _deletes(ids) -> list[Operation]:
    return [Operation(action='delete', collection='events', doc_id=i, label=f'Label {i}') for i in ids]


class RecordingSink:
    def __init__(self, calls: list[str], fail: bool = False):
        self.calls = calls
        self.fail = fail
        self.saved: dict[str, dict] = {}

    def save(self, name, payload):
        if self.fail:
            raise OSError('Datentraeger voll')
        self.calls.append('backup')
        self.saved[name] = payload
        return f'/backups/{name}'


class TestChunking:

    def test_flush_threshold(self):
        assert flush_threshold(500) == 450
        assert flush_threshold(10) == 9
        assert flush_threshold(1) == 1

    def test_no_chunk_exceeds_threshold(self, make_store):
        store = make_store({'events': _events(1000)})
        result = BatchExecutor(store).execute(
            _deletes(f'e{i}' for i in range(1000)), OperationConfig(dry_run=False),
        )
        assert store.batch_sizes == [450, 450, 100]
        assert result.chunks_committed == 3
        assert result.deleted_or_created == 1000
        assert store.count('events') == 0

    def test_configured_batch_size(self, make_store):
        store = make_store({'events': _events(20)})
        BatchExecutor(store, max_batch_size=10).execute(
            _deletes(f'e{i}' for i in range(20)), OperationConfig(dry_run=False),
        )
        assert store.batch_sizes == [9, 9, 2]

    def test_store_limit_caps_configured_size(self, make_store):
        store = make_store({'events': _events(5)}, max_batch_size=2)
        executor = BatchExecutor(store, max_batch_size=500)
        assert executor.max_batch_size == 2
        executor.execute(_deletes(f'e{i}' for i in range(5)), OperationConfig(dry_run=False))
        assert max(store.batch_sizes) <= 2

    def test_invalid_batch_size(self, make_store):
        with pytest.raises(ValidationError):
            BatchExecutor(make_store(), max_batch_size=0)

    def test_empty_operation_list(self, make_store):
        store = make_store()
        result = BatchExecutor(store).execute([], OperationConfig(dry_run=False))
        assert store.batch_sizes == []
        assert result.success
        assert result.deleted_or_created == 0


class TestDryRun:

    def test_no_writes(self, make_store):
        store = make_store({'events': _events(10)})
        calls: list[str] = []
        sink = RecordingSink(calls)
        config = OperationConfig(dry_run=True, create_backup=True)
        result = BatchExecutor(store, backup_sink=sink).execute(
            _deletes(f'e{i}' for i in range(10)), config, backup_records=[],
        )
        assert store.batch_sizes == []
        assert calls == []
        assert store.count('events') == 10
        assert result.deleted_or_created == 10
        assert result.chunks_committed == 0

    def test_untracked_operations_not_counted(self, make_store):
        ops = [
            Operation(action='set', collection='zones', doc_id='z1', data={'name': 'North'},
                      tracked=False),
            Operation(action='set', collection='events', doc_id='n1', data={'name': 'New'}),
        ]
        result = BatchExecutor(make_store()).execute(ops, OperationConfig(dry_run=True))
        assert result.deleted_or_created == 1


class TestBackup:

    def test_backup_before_first_commit(self, make_store):
        store = make_store({'events': _events(3)})
        sink = RecordingSink(store.calls)
        records = [EventRecord.from_dict(e) for e in _events(3)]
        result = BatchExecutor(store, backup_sink=sink, clock=lambda: CLOCK).execute(
            _deletes(['e0', 'e1', 'e2']),
            OperationConfig(dry_run=False, create_backup=True),
            backup_records=records,
        )
        assert store.calls == ['backup', 'commit']
        name = 'backup-before-purge-2023-11-14T22-13-20-500Z.json'
        assert result.backup_created == f'/backups/{name}'
        assert sink.saved[name]['eventCount'] == 3
        assert sink.saved[name]['events'][0]['id'] == 'e0'

    def test_backup_failure_does_not_abort(self, make_store):
        store = make_store({'events': _events(3)})
        sink = RecordingSink(store.calls, fail=True)
        result = BatchExecutor(store, backup_sink=sink).execute(
            _deletes(['e0', 'e1', 'e2']),
            OperationConfig(dry_run=False, create_backup=True),
            backup_records=[],
        )
        assert result.success
        assert result.backup_created is None
        assert result.errors == ['Backup fehlgeschlagen: Datentraeger voll']
        assert result.deleted_or_created == 3

    def test_missing_sink_recorded(self, make_store):
        store = make_store({'events': _events(1)})
        result = BatchExecutor(store).execute(
            _deletes(['e0']), OperationConfig(dry_run=False, create_backup=True), backup_records=[],
        )
        assert len(result.errors) == 1
        assert result.errors[0].startswith('Backup fehlgeschlagen')
        assert result.deleted_or_created == 1

    def test_no_backup_when_disabled(self, make_store):
        store = make_store({'events': _events(1)})
        sink = RecordingSink(store.calls)
        BatchExecutor(store, backup_sink=sink).execute(
            _deletes(['e0']), OperationConfig(dry_run=False), backup_records=[],
        )
        assert store.calls == ['commit']

    def test_backup_timestamp(self):
        assert backup_timestamp(0) == '1970-01-01T00-00-00-000Z'


class TestFailures:

    def test_per_item_failure_keeps_going(self, make_store):
        store = make_store({'events': _events(2)})
        ops = _deletes(['e0', 'ghost', 'e1'])
        result = BatchExecutor(store).execute(ops, OperationConfig(dry_run=False))
        assert result.success
        assert result.deleted_or_created == 2
        assert result.skipped == 1
        assert result.errors == ['Loeschen fehlgeschlagen: Label ghost']
        assert result.affected_ids == ['e0', 'e1']

    def test_store_unavailable_stops_run(self, make_store):
        store = make_store({'events': _events(1000)}, fail_on_batch=2)
        result = BatchExecutor(store).execute(
            _deletes(f'e{i}' for i in range(1000)), OperationConfig(dry_run=False),
        )
        assert not result.success
        assert result.chunks_committed == 1
        assert result.deleted_or_created == 450
        assert store.count('events') == 550
        assert 'nach 1 erfolgreich' in result.errors[0]

    def test_store_unavailable_on_first_chunk(self, make_store):
        store = make_store({'events': _events(3)}, fail_on_batch=1)
        result = BatchExecutor(store).execute(_deletes(['e0']), OperationConfig(dry_run=False))
        assert not result.success
        assert result.chunks_committed == 0
        assert store.count('events') == 3


class TestRollback:

    def test_deletes_exactly_given_ids(self, make_store):
        store = make_store({'events': _events(5)})
        result = BatchExecutor(store).rollback(['e1', 'e3', 'e1'])
        assert result.operation == 'rollback'
        assert result.matched_or_imported == 2
        assert result.deleted_or_created == 2
        assert sorted(e['id'] for e in store.query('events')) == ['e0', 'e2', 'e4']

    def test_missing_id_reported(self, make_store):
        store = make_store({'events': _events(1)})
        result = BatchExecutor(store).rollback(['e0', 'gone'])
        assert result.deleted_or_created == 1
        assert result.errors == ['Loeschen fehlgeschlagen: gone']

    def test_rollback_chunked(self, make_store):
        store = make_store({'events': _events(900)})
        BatchExecutor(store).rollback([f'e{i}' for i in range(900)])
        assert store.batch_sizes == [450, 450]

    def test_dry_run(self, make_store):
        store = make_store({'events': _events(2)})
        result = BatchExecutor(store).rollback(['e0', 'e1'], dry_run=True)
        assert result.deleted_or_created == 2
        assert store.count('events') == 2
