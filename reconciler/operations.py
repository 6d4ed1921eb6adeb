"""Analyze, purge, import and rollback operations over an event archive.

Every operation runs sequentially within one call: archive parsing,
matching or conflict detection, batch execution, aggregation. Validation,
integrity and version errors are raised before the store is touched; store
failures during execution are reported in the returned OperationResult.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from reconciler import (
    ArchiveStats,
    Club,
    ConflictItem,
    DateRange,
    EventRecord,
    EventType,
    Filters,
    MatchResult,
    Operation,
    OperationConfig,
    OperationResult,
    Zone,
)
from reconciler.conflicts import (
    DEFAULT_RESOLUTION,
    PlannedWrite,
    apply_resolutions,
    detect_conflicts,
    plan_import,
)
from reconciler.errors import ValidationError
from reconciler.executor import BatchExecutor
from reconciler.matching import UNKNOWN, match_events, resolve_names
from reconciler.reader import read_archive
from reconciler.reporter import SummaryRow, elapsed_ms, start_timer, summarize, summarize_matches
from reconciler.scoring import parse_date
from reconciler.sinks import BackupSink, FileSink
from reconciler.store import CLUBS, EVENT_TYPES, EVENTS, ZONES, Store

log = logging.getLogger(__name__)


@dataclass
class AnalysisOutcome:
    analysis: ArchiveStats
    matches: list[MatchResult]

    def to_dict(self) -> dict[str, Any]:
        stats = self.analysis
        return {
            'analysis': {
                'totalEvents': stats.total_events,
                'dateRange': {'start': stats.date_range.start, 'end': stats.date_range.end},
                'zones': stats.zones,
                'clubs': stats.clubs,
                'eventTypes': stats.event_types,
                'hasManifest': stats.has_manifest,
                'manifestVersion': stats.manifest_version,
                'checksumValid': stats.checksum_valid,
            },
            'matches': [m.to_dict() for m in self.matches],
        }


def _live_events(store: Store) -> list[EventRecord]:
    return [EventRecord.from_dict(doc) for doc in store.query(EVENTS)]


def _live_clubs(store: Store) -> list[Club]:
    return [Club.from_dict(doc) for doc in store.query(CLUBS)]


def _live_zones(store: Store) -> list[Zone]:
    return [Zone.from_dict(doc) for doc in store.query(ZONES)]


def _live_event_types(store: Store) -> list[EventType]:
    return [EventType.from_dict(doc) for doc in store.query(EVENT_TYPES)]


def _to_day(value: str | None) -> date | None:
    parsed = parse_date(value or '')
    return parsed.date() if parsed else None


def in_date_range(value: str, date_range: DateRange) -> bool:
    """Inclusive date range check; an unparseable date is outside any set range."""
    if not date_range.is_set():
        return True
    day = _to_day(value)
    if day is None:
        return False
    start = _to_day(date_range.start)
    end = _to_day(date_range.end)
    return (start is None or day >= start) and (end is None or day <= end)


def filter_matches(matches: list[MatchResult], filters: Filters) -> list[MatchResult]:
    """Keep matches whose zone, club and date pass every configured filter."""
    selected = matches
    if filters.zone:
        selected = [m for m in selected if m.zone in filters.zone]
    if filters.club:
        selected = [m for m in selected if m.club in filters.club]
    if filters.date_range.is_set():
        selected = [m for m in selected if in_date_range(m.date, filters.date_range)]
    log.info("%d von %d Treffern nach Filterung", len(selected), len(matches))
    return selected


class _NameIndex:
    """Display-name lookup over archive and live reference data (archive first)."""

    def __init__(self, clubs: list[Club], zones: list[Zone], event_types: list[EventType]) -> None:
        self.clubs: dict[str, Club] = {}
        self.zones: dict[str, Zone] = {}
        self.types: dict[str, EventType] = {}
        for club in clubs:
            self.clubs.setdefault(club.id, club)
        for zone in zones:
            self.zones.setdefault(zone.id, zone)
        for event_type in event_types:
            self.types.setdefault(event_type.id, event_type)

    def club_and_zone(self, record: EventRecord) -> tuple[str, str]:
        club, zone = resolve_names(record.club_id, self.clubs, self.zones)
        if zone == UNKNOWN and record.zone_id in self.zones:
            zone = self.zones[record.zone_id].name or UNKNOWN
        return club, zone

    def type_name(self, record: EventRecord) -> str | None:
        event_type = self.types.get(record.event_type_id) if record.event_type_id else None
        return event_type.name if event_type else None


def _filter_archive_events(events: list[EventRecord], filters: Filters,
                           names: _NameIndex) -> list[EventRecord]:
    selected = []
    for record in events:
        club, zone = names.club_and_zone(record)
        if filters.zone and zone not in filters.zone:
            continue
        if filters.club and club not in filters.club:
            continue
        if filters.event_type and not (
            record.event_type_id in filters.event_type
            or names.type_name(record) in filters.event_type
        ):
            continue
        if not in_date_range(record.date, filters.date_range):
            continue
        selected.append(record)
    if len(selected) != len(events):
        log.info("%d von %d Archiv-Events nach Filterung", len(selected), len(events))
    return selected


def analyze(data: bytes, store: Store, validate_manifest: bool = False) -> AnalysisOutcome:
    """Read an archive and match it against the live events.

    Args:
        data: Archive ZIP bytes.
        store: Live store.
        validate_manifest: Enforce manifest version and checksums.

    Returns:
        Archive statistics and the best match per live event.
    """
    archive = read_archive(data, validate_manifest)
    matches = match_events(_live_events(store), archive.events, _live_clubs(store), _live_zones(store))
    return AnalysisOutcome(analysis=archive.stats, matches=matches)


def purge(
    data: bytes,
    config: OperationConfig,
    store: Store,
    backup_sink: BackupSink | None = None,
    confirmed: bool = False,
) -> OperationResult:
    """Delete the live events matched by an archive.

    The archive is matched against the live store, matches are filtered by
    zone, club and date range, and the matched live records are deleted in
    chunks. With ``config.dry_run`` nothing is deleted and the result holds
    the counts that would have been affected.

    Args:
        data: Archive ZIP bytes.
        config: Purge options.
        store: Live store.
        backup_sink: Destination of the pre-purge snapshot.
        confirmed: Explicit confirmation, required for a real run when
            ``config.require_confirmation`` is set.

    Raises:
        ValidationError: Missing confirmation, missing files or bad JSON.
        IncompatibilityError: Unsupported manifest version.
        IntegrityError: Checksum mismatch.
    """
    started = start_timer()
    if config.require_confirmation and not config.dry_run and not confirmed:
        raise ValidationError(
            "Loeschen erfordert eine ausdrueckliche Bestaetigung", ['require_confirmation'],
        )

    archive = read_archive(data, config.validate_manifest)
    matches = match_events(
        _live_events(store), archive.events, _live_clubs(store), _live_zones(store),
    )
    selected = filter_matches(matches, config.filters)

    operations = [
        Operation(action='delete', collection=EVENTS, doc_id=m.live_id, label=m.name)
        for m in selected
    ]
    log.info(
        "%d Events zur %s vorgesehen",
        len(operations), 'Simulation' if config.dry_run else 'Loeschung',
    )
    executor = BatchExecutor(store, config.max_batch_size, backup_sink)
    result = executor.execute(
        operations,
        config,
        operation='purge',
        backup_records=[m.live_record for m in selected],
        backup_prefix='backup-before-purge',
    )
    result.matched_or_imported = len(selected)
    result.summary = summarize_matches(selected)
    result.elapsed_ms = elapsed_ms(started)
    return result


def _reference_operations(records, collection: str) -> list[Operation]:
    return [
        Operation(
            action='set', collection=collection, doc_id=r.id,
            data=_reference_doc(r), label=r.name or r.id, tracked=False,
        )
        for r in records
    ]


def _reference_doc(record) -> dict[str, Any]:
    doc = {'id': record.id, 'name': record.name}
    if isinstance(record, Club) and record.zone_id:
        doc['zoneId'] = record.zone_id
    return doc


def import_archive(
    data: bytes,
    config: OperationConfig,
    store: Store,
    resolutions: dict[str, str] | None = None,
    conflicts: list[ConflictItem] | None = None,
    backup_sink: BackupSink | None = None,
    file_sink: FileSink | None = None,
    clock: Callable[[], float] = time.time,
) -> OperationResult:
    """Import archive events into the live store with conflict resolution.

    Reference data (zones, clubs, event types) is upserted first, then the
    events. Conflicts with live events are detected here; their resolutions
    come from ``resolutions`` (conflict id or archive event id to
    skip/overwrite/rename/merge, optional ``default`` key) or from the
    ``resolution`` of previously returned ``conflicts``, and default to skip.

    Args:
        data: Archive ZIP bytes.
        config: Import options.
        store: Live store.
        resolutions: Resolution per conflict id or archive event id.
        conflicts: Conflicts resolved by an operator in an earlier round.
        backup_sink: Destination of the snapshot of overwritten events.
        file_sink: Destination of ancillary ``schedules/`` files.
        clock: Epoch seconds, used for renamed ids and backup names.

    Returns:
        OperationResult whose ``affected_ids`` are the newly created event
        ids, the input of ``rollback_import``.
    """
    started = start_timer()
    archive = read_archive(data, config.validate_manifest)

    live_clubs = _live_clubs(store)
    live_zones = _live_zones(store)
    live_types = _live_event_types(store)
    names = _NameIndex(
        archive.clubs + live_clubs, archive.zones + live_zones, archive.event_types + live_types,
    )

    candidates = _filter_archive_events(archive.events, config.filters, names)
    live_events = _live_events(store)
    detected = detect_conflicts(
        candidates,
        live_events,
        allow_duplicates=config.allow_duplicates,
        clubs=archive.clubs + live_clubs,
        event_types=archive.event_types + live_types,
    )

    mapping = {c.imported.id: c.resolution for c in conflicts or [] if c.resolution}
    mapping.update(resolutions or {})
    default = mapping.pop('default', DEFAULT_RESOLUTION)
    resolved = apply_resolutions(detected, mapping, default=default)

    plan = plan_import(candidates, resolved, now_ms=int(clock() * 1000))

    operations = (
        _reference_operations(archive.zones, ZONES)
        + _reference_operations(archive.clubs, CLUBS)
        + _reference_operations(archive.event_types, EVENT_TYPES)
        + [
            Operation(
                action='set', collection=EVENTS, doc_id=w.record.id,
                data=w.record.to_dict(), label=w.record.name,
            )
            for w in plan.writes
        ]
    )
    live_by_id = {e.id: e for e in live_events}
    overwritten = [
        live_by_id[w.record.id] for w in plan.writes
        if w.kind == 'overwrite' and w.record.id in live_by_id
    ]

    executor = BatchExecutor(store, config.max_batch_size, backup_sink, clock=clock)
    result = executor.execute(
        operations,
        config,
        operation='import',
        backup_records=overwritten,
        backup_prefix='backup-before-import',
    )
    created = {w.record.id for w in plan.writes if w.creates_record}
    result.affected_ids = [doc_id for doc_id in result.affected_ids if doc_id in created]
    result.matched_or_imported = len(plan.writes)
    result.skipped += len(plan.skipped)
    result.warnings.extend(plan.warnings)
    result.summary = summarize(_summary_row(w, names) for w in plan.writes)

    if archive.ancillary_files and not config.skip_ancillary_files and result.success:
        _store_ancillary(archive.ancillary_files, config, file_sink, result)

    result.elapsed_ms = elapsed_ms(started)
    log.info(
        "Import abgeschlossen: %d importiert, %d uebersprungen, %d Zeitplaene",
        result.deleted_or_created, result.skipped, result.schedules_uploaded,
    )
    return result


def _summary_row(write: PlannedWrite, names: _NameIndex) -> SummaryRow:
    club, zone = names.club_and_zone(write.record)
    return SummaryRow(zone=zone, club=club, status=write.record.status, match_type=write.kind)


def _store_ancillary(
    files: dict[str, bytes],
    config: OperationConfig,
    file_sink: FileSink | None,
    result: OperationResult,
) -> None:
    if config.dry_run:
        result.schedules_uploaded = len(files)
        return
    if file_sink is None:
        result.warnings.append(
            f"{len(files)} Zeitplan-Dateien nicht hochgeladen: kein Dateiziel konfiguriert"
        )
        return
    for name, content in sorted(files.items()):
        try:
            file_sink.store(name, content)
        except (OSError, ValueError) as exc:
            result.errors.append(f"Hochladen fehlgeschlagen: {name} ({exc})")
            log.warning("Hochladen fehlgeschlagen: %s (%s)", name, exc)
        else:
            result.schedules_uploaded += 1


def rollback_import(
    ids: list[str],
    store: Store,
    config: OperationConfig | None = None,
) -> OperationResult:
    """Delete the events created by a completed import.

    Args:
        ids: ``affected_ids`` of the import result.
        store: Live store.
        config: Optional options; ``dry_run`` and ``max_batch_size`` are used.
    """
    started = start_timer()
    config = config or OperationConfig(dry_run=False)
    executor = BatchExecutor(store, config.max_batch_size)
    result = executor.rollback(ids, EVENTS, dry_run=config.dry_run)
    result.elapsed_ms = elapsed_ms(started)
    log.info("Rollback: %d von %d Events geloescht", result.deleted_or_created, len(ids))
    return result
