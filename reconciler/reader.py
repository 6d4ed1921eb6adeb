"""Archive reader with structure, manifest and checksum validation."""

import hashlib
import io
import json
import logging
import re
import zipfile
from dataclasses import dataclass, field, replace
from typing import Any

from reconciler import (
    ArchiveStats,
    Club,
    DateRange,
    EventRecord,
    EventType,
    Manifest,
    ManifestFile,
    Zone,
)
from reconciler.errors import IncompatibilityError, IntegrityError, ValidationError

log = logging.getLogger(__name__)

SUPPORTED_MANIFEST_VERSION = '1.0'
MANIFEST_NAME = 'manifest.json'
REQUIRED_FILES: tuple[str, ...] = ('events.json', 'clubs.json', 'zones.json', 'event-types.json')
ANCILLARY_PREFIX = 'schedules/'

# Matches any sequence of whitespace (including Unicode whitespace like U+2006)
_WHITESPACE_RE = re.compile(r'\s+')


@dataclass
class Archive:
    """Typed contents of an uploaded archive."""

    events: list[EventRecord]
    clubs: list[Club]
    zones: list[Zone]
    event_types: list[EventType]
    stats: ArchiveStats
    manifest: Manifest | None = None
    ancillary_files: dict[str, bytes] = field(default_factory=dict)


def normalize_whitespace(value: str) -> str:
    """Collapse whitespace runs into single spaces and strip the ends."""
    return _WHITESPACE_RE.sub(' ', value).strip()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _open_zip(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise ValidationError(f"Archiv ist keine gueltige ZIP-Datei: {exc}") from exc


def _read_members(zf: zipfile.ZipFile) -> dict[str, bytes]:
    return {info.filename: zf.read(info) for info in zf.infolist() if not info.is_dir()}


def _parse_json_array(name: str, raw: bytes, problems: list[str]) -> list[dict[str, Any]]:
    """Decode a member that must hold a JSON array of objects.

    Problems are appended to ``problems`` instead of raised so that every
    broken member is reported together.
    """
    try:
        data = json.loads(raw.decode('utf-8-sig'))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        problems.append(f"{name}: ungueltiges JSON ({exc})")
        return []
    if not isinstance(data, list):
        problems.append(f"{name}: JSON-Array erwartet")
        return []
    rows = [row for row in data if isinstance(row, dict)]
    if len(rows) != len(data):
        problems.append(f"{name}: {len(data) - len(rows)} Eintraege sind keine Objekte")
    return rows


def _require_keys(name: str, rows: list[dict[str, Any]], keys: tuple[str, ...],
                  problems: list[str]) -> list[dict[str, Any]]:
    valid = []
    for index, row in enumerate(rows):
        missing = [k for k in keys if row.get(k) in (None, '')]
        if missing:
            problems.append(f"{name}[{index}]: fehlende Felder {', '.join(missing)}")
        else:
            valid.append(row)
    return valid


def parse_manifest(raw: bytes) -> Manifest:
    """Parse ``manifest.json``.

    ``files`` may be a list of ``{name, size, checksum}`` objects or a mapping
    of file name to ``{size, checksum}`` (older exports).

    Raises:
        ValidationError: If the manifest is not valid JSON or lacks a version.
    """
    try:
        data = json.loads(raw.decode('utf-8-sig'))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"{MANIFEST_NAME}: ungueltiges JSON ({exc})", [MANIFEST_NAME]) from exc
    if not isinstance(data, dict) or 'version' not in data:
        raise ValidationError(f"{MANIFEST_NAME}: Feld 'version' fehlt", [MANIFEST_NAME])

    raw_files = data.get('files') or []
    if isinstance(raw_files, dict):
        raw_files = [dict(info, name=name) for name, info in raw_files.items()]
    files = [
        ManifestFile(
            name=str(info.get('name', '')),
            size=int(info.get('size') or 0),
            checksum=str(info.get('checksum', '')).lower(),
        )
        for info in raw_files
        if isinstance(info, dict)
    ]
    return Manifest(
        version=str(data['version']),
        files=files,
        metadata=data.get('metadata') or {},
    )


def checksum_mismatches(manifest: Manifest, members: dict[str, bytes]) -> list[str]:
    """Return the names of listed files whose SHA-256 differs from the manifest.

    Files listed in the manifest but absent from the archive are ignored.
    """
    return [
        entry.name
        for entry in manifest.files
        if entry.name in members and sha256_hex(members[entry.name]) != entry.checksum
    ]


def _date_range(events: list[EventRecord]) -> DateRange:
    dates = sorted(e.date for e in events if e.date)
    if not dates:
        return DateRange()
    return DateRange(start=dates[0], end=dates[-1])


def _distinct(values) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


def read_archive(data: bytes, validate_manifest: bool = False) -> Archive:
    """Validate and parse an exported event archive.

    Args:
        data: Raw ZIP bytes.
        validate_manifest: Enforce manifest version and checksums when a
            manifest is present.

    Returns:
        Archive with typed collections and statistics.

    Raises:
        ValidationError: Missing required members or malformed JSON; lists
            every problem found.
        IncompatibilityError: Unsupported manifest version.
        IntegrityError: Checksum mismatch; lists every mismatching file.
    """
    with _open_zip(data) as zf:
        members = _read_members(zf)

    missing = [name for name in REQUIRED_FILES if name not in members]
    if missing:
        raise ValidationError(
            f"Fehlende Pflichtdateien im Archiv: {', '.join(missing)}", missing,
        )

    manifest = parse_manifest(members[MANIFEST_NAME]) if MANIFEST_NAME in members else None
    mismatches: list[str] = []
    if manifest is not None:
        if validate_manifest and manifest.version != SUPPORTED_MANIFEST_VERSION:
            raise IncompatibilityError(
                f"Inkompatible Export-Version: {manifest.version}"
                f" (unterstuetzt: {SUPPORTED_MANIFEST_VERSION})",
                [manifest.version],
            )
        mismatches = checksum_mismatches(manifest, members)
        if mismatches and validate_manifest:
            raise IntegrityError(
                f"Pruefsummen stimmen nicht ueberein: {', '.join(mismatches)}", mismatches,
            )
        for name in mismatches:
            log.warning("Pruefsumme stimmt nicht fuer %s", name)

    problems: list[str] = []
    event_rows = _require_keys(
        'events.json',
        _parse_json_array('events.json', members['events.json'], problems),
        ('id', 'name'),
        problems,
    )
    club_rows = _require_keys(
        'clubs.json', _parse_json_array('clubs.json', members['clubs.json'], problems),
        ('id',), problems,
    )
    zone_rows = _require_keys(
        'zones.json', _parse_json_array('zones.json', members['zones.json'], problems),
        ('id',), problems,
    )
    type_rows = _require_keys(
        'event-types.json',
        _parse_json_array('event-types.json', members['event-types.json'], problems),
        ('id',),
        problems,
    )
    if problems:
        raise ValidationError(
            f"Archiv enthaelt fehlerhafte Daten: {'; '.join(problems)}", problems,
        )

    events = [
        replace(record, name=normalize_whitespace(record.name))
        for record in map(EventRecord.from_dict, event_rows)
    ]
    clubs = [Club.from_dict(row) for row in club_rows]
    zones = [Zone.from_dict(row) for row in zone_rows]
    event_types = [EventType.from_dict(row) for row in type_rows]

    ancillary = {
        name: content for name, content in members.items()
        if name.startswith(ANCILLARY_PREFIX)
    }

    stats = ArchiveStats(
        total_events=len(events),
        date_range=_date_range(events),
        zones=_distinct(z.name for z in zones),
        clubs=_distinct(c.name for c in clubs),
        event_types=_distinct(t.name or t.id for t in event_types),
        has_manifest=manifest is not None,
        manifest_version=manifest.version if manifest else 'unknown',
        checksum_valid=not mismatches,
    )

    log.info(
        "%d Events, %d Clubs, %d Zonen gelesen aus Archiv",
        len(events), len(clubs), len(zones),
    )
    return Archive(
        events=events,
        clubs=clubs,
        zones=zones,
        event_types=event_types,
        stats=stats,
        manifest=manifest,
        ancillary_files=ancillary,
    )
