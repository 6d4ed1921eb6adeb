"""Conflict detection and resolution for archive imports."""

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Literal

from reconciler import RESOLUTIONS, Club, ConflictItem, EventRecord, EventType
from reconciler.errors import ValidationError

log = logging.getLogger(__name__)

DEFAULT_RESOLUTION = 'skip'
RENAME_SUFFIX = ' (Imported)'


@dataclass
class PlannedWrite:
    """An archive record as it will be written to the live store."""

    record: EventRecord
    kind: Literal['new', 'overwrite', 'rename']
    source_id: str

    @property
    def creates_record(self) -> bool:
        return self.kind != 'overwrite'


@dataclass
class ImportPlan:
    writes: list[PlannedWrite] = field(default_factory=list)
    skipped: list[EventRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def detect_conflicts(
    archive_records: list[EventRecord],
    live_records: list[EventRecord],
    allow_duplicates: bool = False,
    clubs: Iterable[Club] | None = None,
    event_types: Iterable[EventType] | None = None,
) -> list[ConflictItem]:
    """Detect overlaps between archive records and existing live records.

    Names are compared exactly (case-sensitive), unlike the fuzzy matcher.
    Each archive record yields at most one conflict; an id collision wins
    over a name collision.

    Args:
        archive_records: Records intended for import.
        live_records: Records currently in the live store.
        allow_duplicates: Do not report name-only collisions.
        clubs: Known clubs; when given, unknown club references are reported.
        event_types: Known event types; when given, unknown type references
            are reported.

    Returns:
        Unresolved ConflictItems in archive order.
    """
    by_id: dict[str, EventRecord] = {}
    by_name: dict[str, EventRecord] = {}
    for live in live_records:
        by_id.setdefault(live.id, live)
        by_name.setdefault(live.name, live)

    club_ids = {c.id for c in clubs} if clubs is not None else None
    type_ids = {t.id for t in event_types} if event_types is not None else None

    conflicts: list[ConflictItem] = []

    def add(**kwargs) -> None:
        conflicts.append(ConflictItem(id=f'conflict_{len(conflicts) + 1}', **kwargs))

    for record in archive_records:
        existing = by_id.get(record.id)
        if existing is not None:
            add(
                type='duplicate_id', severity='high', existing=existing, imported=record,
                message=f"Event-ID {record.id} existiert bereits ('{existing.name}')",
            )
            continue

        existing = by_name.get(record.name)
        if existing is not None and not allow_duplicates:
            add(
                type='duplicate_name', severity='medium', existing=existing, imported=record,
                message=f"Event mit gleichem Namen existiert bereits (ID {existing.id},"
                        f" Datum {existing.date})",
            )
            continue

        if club_ids is not None and record.club_id and record.club_id not in club_ids:
            add(
                type='club_missing', severity='low', existing=None, imported=record,
                message=f"Club {record.club_id} ist unbekannt",
            )
        elif type_ids is not None and record.event_type_id and record.event_type_id not in type_ids:
            add(
                type='type_missing', severity='low', existing=None, imported=record,
                message=f"Event-Typ {record.event_type_id} ist unbekannt",
            )

    log.info("%d Konflikte bei %d Archiv-Events erkannt", len(conflicts), len(archive_records))
    return conflicts


def apply_resolutions(
    conflicts: list[ConflictItem],
    resolutions: dict[str, str] | None = None,
    default: str = DEFAULT_RESOLUTION,
) -> list[ConflictItem]:
    """Attach a resolution to every conflict.

    A resolution is looked up by conflict id first, then by the imported
    record's id. Conflicts that already carry a resolution keep it unless
    the mapping overrides it; everything else gets ``default``. Low-severity
    reference conflicts (unknown club or event type) never take the default
    and stay unresolved unless chosen explicitly.

    Raises:
        ValidationError: If a resolution value is not one of skip, overwrite,
            rename, merge.
    """
    resolutions = resolutions or {}
    invalid = sorted({
        f"{key}={value}" for key, value in resolutions.items() if value not in RESOLUTIONS
    })
    if default not in RESOLUTIONS:
        invalid.append(f"default={default}")
    if invalid:
        raise ValidationError(f"Ungueltige Konfliktaufloesung: {', '.join(invalid)}", invalid)

    resolved = []
    for conflict in conflicts:
        choice = resolutions.get(conflict.id) or resolutions.get(conflict.imported.id)
        fallback = None if conflict.severity == 'low' else default
        resolved.append(replace(conflict, resolution=choice or conflict.resolution or fallback))
    return resolved


def _find_conflict(record: EventRecord, conflicts: list[ConflictItem]) -> ConflictItem | None:
    # A conflict belongs to the record it was detected for, never to a namesake
    for conflict in conflicts:
        if conflict.imported == record:
            return conflict
    return None


def plan_import(
    archive_records: list[EventRecord],
    conflicts: list[ConflictItem],
    now_ms: int,
) -> ImportPlan:
    """Turn archive records and resolved conflicts into planned writes.

    Resolution semantics:
      - skip: not written, counted as skipped
      - overwrite: written under the existing record's id
      - rename: written under ``{id}_imported_{now_ms}`` with the name
        suffixed ``(Imported)``
      - merge: unsupported, behaves as skip and adds a warning
    Unresolved reference conflicts (unknown club or event type) are written
    as new with a warning; other unresolved conflicts behave as skip.

    Args:
        archive_records: Records intended for import.
        conflicts: Conflicts with resolutions attached.
        now_ms: Timestamp (milliseconds) used for renamed ids.

    Returns:
        ImportPlan with writes, skipped records and warnings.
    """
    plan = ImportPlan()
    for record in archive_records:
        conflict = _find_conflict(record, conflicts)
        if conflict is None:
            plan.writes.append(PlannedWrite(record=record, kind='new', source_id=record.id))
            continue

        resolution = conflict.resolution
        if resolution is None and conflict.severity == 'low':
            plan.warnings.append(f"{conflict.message}, trotzdem importiert: {record.name}")
            plan.writes.append(PlannedWrite(record=record, kind='new', source_id=record.id))
        elif resolution == 'overwrite':
            target_id = conflict.existing.id if conflict.existing else record.id
            plan.writes.append(PlannedWrite(
                record=replace(record, id=target_id),
                kind='overwrite' if conflict.existing else 'new',
                source_id=record.id,
            ))
        elif resolution == 'rename':
            plan.writes.append(PlannedWrite(
                record=replace(
                    record,
                    id=f'{record.id}_imported_{now_ms}',
                    name=f'{record.name}{RENAME_SUFFIX}',
                ),
                kind='rename',
                source_id=record.id,
            ))
        else:
            if resolution == 'merge':
                plan.warnings.append(
                    f"Zusammenfuehren nicht unterstuetzt, uebersprungen: {record.name}"
                )
            elif resolution is None:
                log.warning("Konflikt %s ohne Aufloesung, uebersprungen", conflict.id)
            plan.skipped.append(record)

    log.info(
        "Importplan: %d zu schreiben, %d uebersprungen",
        len(plan.writes), len(plan.skipped),
    )
    return plan
