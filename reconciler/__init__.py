"""Core module for the event archive reconciler."""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

MatchType = Literal['exact', 'near', 'partial']
ConflictType = Literal[
    'duplicate_id', 'duplicate_name', 'date_conflict', 'club_missing', 'type_missing',
]
Severity = Literal['high', 'medium', 'low']
Resolution = Literal['skip', 'overwrite', 'rename', 'merge']

RESOLUTIONS: tuple[str, ...] = ('skip', 'overwrite', 'rename', 'merge')

# Wire keys that map onto EventRecord attributes
_EVENT_KEYS = {
    'id': 'id',
    'name': 'name',
    'date': 'date',
    'clubId': 'club_id',
    'zoneId': 'zone_id',
    'eventTypeId': 'event_type_id',
    'status': 'status',
}


@dataclass(frozen=True)
class EventRecord:
    """An event record, either read from an archive or from the live store."""

    id: str
    name: str
    date: str
    club_id: Optional[str] = None
    zone_id: Optional[str] = None
    event_type_id: Optional[str] = None
    status: str = 'unknown'
    extra: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'EventRecord':
        """Build a record from its JSON shape (camelCase keys)."""
        kwargs = {attr: data.get(key) for key, attr in _EVENT_KEYS.items()}
        kwargs['id'] = str(kwargs['id'])
        kwargs['name'] = kwargs['name'] or ''
        kwargs['date'] = str(kwargs['date'] or '')
        kwargs['status'] = kwargs['status'] or 'unknown'
        extra = {k: v for k, v in data.items() if k not in _EVENT_KEYS}
        return cls(extra=extra, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON shape, dropping unset optional keys."""
        out = dict(self.extra)
        for key, attr in _EVENT_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True)
class Club:
    id: str
    name: str
    zone_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Club':
        return cls(id=str(data['id']), name=data.get('name') or '', zone_id=data.get('zoneId'))


@dataclass(frozen=True)
class Zone:
    id: str
    name: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Zone':
        return cls(id=str(data['id']), name=data.get('name') or '')


@dataclass(frozen=True)
class EventType:
    id: str
    name: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'EventType':
        return cls(id=str(data['id']), name=data.get('name') or '')


@dataclass
class MatchResult:
    """Best pairing of a live record with an archive record."""

    live_id: str
    name: str
    date: str
    archive_record: EventRecord
    live_record: EventRecord
    confidence: int       # 0 – 100
    match_type: MatchType
    club: str = 'Unknown'
    zone: str = 'Unknown'
    status: str = 'unknown'

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.live_id,
            'name': self.name,
            'date': self.date,
            'club': self.club,
            'zone': self.zone,
            'status': self.status,
            'matchType': self.match_type,
            'confidence': self.confidence,
            'archiveEvent': self.archive_record.to_dict(),
        }


@dataclass
class ConflictItem:
    """Overlap between an archive record and an existing live record."""

    id: str
    type: ConflictType
    severity: Severity
    existing: Optional[EventRecord]
    imported: EventRecord
    resolution: Optional[Resolution] = None
    message: str = ''


@dataclass
class DateRange:
    start: Optional[str] = None
    end: Optional[str] = None

    def is_set(self) -> bool:
        return bool(self.start or self.end)


@dataclass
class Filters:
    zone: list[str] = field(default_factory=list)
    club: list[str] = field(default_factory=list)
    event_type: list[str] = field(default_factory=list)
    date_range: DateRange = field(default_factory=DateRange)


@dataclass
class OperationConfig:
    """Options shared by purge and import runs."""

    dry_run: bool = True
    filters: Filters = field(default_factory=Filters)
    require_confirmation: bool = False
    create_backup: bool = False
    skip_ancillary_files: bool = False
    allow_duplicates: bool = False
    validate_manifest: bool = False
    max_batch_size: Optional[int] = None


@dataclass
class PurgeConfig(OperationConfig):
    require_confirmation: bool = True
    create_backup: bool = True


@dataclass
class ImportConfig(OperationConfig):
    validate_manifest: bool = True


@dataclass
class ManifestFile:
    name: str
    size: int
    checksum: str


@dataclass
class Manifest:
    version: str
    files: list[ManifestFile] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ArchiveStats:
    """Archive-level statistics reported by the analyze operation."""

    total_events: int = 0
    date_range: DateRange = field(default_factory=DateRange)
    zones: list[str] = field(default_factory=list)
    clubs: list[str] = field(default_factory=list)
    event_types: list[str] = field(default_factory=list)
    has_manifest: bool = False
    manifest_version: str = 'unknown'
    checksum_valid: bool = True


@dataclass
class Operation:
    """A single store mutation queued for the batch executor."""

    action: Literal['set', 'delete']
    collection: str
    doc_id: str
    data: Optional[dict[str, Any]] = None
    label: str = ''
    tracked: bool = True


@dataclass
class Summary:
    by_zone: dict[str, int] = field(default_factory=dict)
    by_club: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    by_match_type: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {
            'byZone': dict(self.by_zone),
            'byClub': dict(self.by_club),
            'byStatus': dict(self.by_status),
            'byMatchType': dict(self.by_match_type),
        }


@dataclass
class OperationResult:
    """Outcome of a purge, import or rollback run."""

    operation: Literal['purge', 'import', 'rollback']
    success: bool = True
    matched_or_imported: int = 0
    deleted_or_created: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    backup_created: Optional[str] = None
    elapsed_ms: int = 0
    summary: Summary = field(default_factory=Summary)
    chunks_committed: int = 0
    affected_ids: list[str] = field(default_factory=list)
    schedules_uploaded: int = 0

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            'success': self.success,
            'matchedOrImported': self.matched_or_imported,
        }
        if self.operation == 'import':
            out['imported'] = self.deleted_or_created
            out['createdIds'] = list(self.affected_ids)
            out['schedulesUploaded'] = self.schedules_uploaded
        else:
            out['deleted'] = self.deleted_or_created
        out.update({
            'skipped': self.skipped,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'elapsedMs': self.elapsed_ms,
            'chunksCommitted': self.chunks_committed,
            'summary': self.summary.to_dict(),
        })
        if self.backup_created:
            out['backupCreated'] = self.backup_created
        return out
