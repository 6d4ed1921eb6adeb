"""Archive writer producing the export format read by ``reconciler.reader``."""

import io
import json
import logging
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from reconciler.reader import MANIFEST_NAME, SUPPORTED_MANIFEST_VERSION, sha256_hex
from reconciler.store import CLUBS, EVENT_TYPES, EVENTS, ZONES, Store

log = logging.getLogger(__name__)


def _dump(data: Any) -> bytes:
    return json.dumps(data, indent=2, ensure_ascii=False).encode('utf-8')


def build_manifest(members: dict[str, bytes], metadata: dict[str, Any] | None = None) -> dict[str, Any]:
    """Describe ``members`` with size and SHA-256 checksum."""
    return {
        'version': SUPPORTED_MANIFEST_VERSION,
        'files': [
            {'name': name, 'size': len(data), 'checksum': sha256_hex(data)}
            for name, data in members.items()
        ],
        'metadata': metadata or {},
    }


def build_archive(
    events: list[dict[str, Any]],
    clubs: list[dict[str, Any]],
    zones: list[dict[str, Any]],
    event_types: list[dict[str, Any]],
    include_manifest: bool = True,
    ancillary: dict[str, bytes] | None = None,
    metadata: dict[str, Any] | None = None,
) -> bytes:
    """Build a ZIP archive of event data.

    Args:
        events: Event documents (JSON shape).
        clubs: Club documents.
        zones: Zone documents.
        event_types: Event type documents.
        include_manifest: Add ``manifest.json`` with checksums of all members.
        ancillary: Extra members, e.g. ``schedules/<file>.pdf``.
        metadata: Free-form manifest metadata.

    Returns:
        ZIP bytes.
    """
    members: dict[str, bytes] = {
        'events.json': _dump(events),
        'clubs.json': _dump(clubs),
        'zones.json': _dump(zones),
        'event-types.json': _dump(event_types),
    }
    members.update(ancillary or {})
    if include_manifest:
        meta = {'exportedAt': datetime.now(timezone.utc).isoformat(), 'totalEvents': len(events)}
        meta.update(metadata or {})
        members[MANIFEST_NAME] = _dump(build_manifest(members, meta))

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buf.getvalue()


def export_store(store: Store, output_path: str | Path, include_manifest: bool = True) -> int:
    """Write the store's event data to a ZIP archive.

    Returns:
        Number of exported events.
    """
    events = store.query(EVENTS)
    data = build_archive(
        events,
        store.query(CLUBS),
        store.query(ZONES),
        store.query(EVENT_TYPES),
        include_manifest=include_manifest,
    )
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(data)
    log.info("Export geschrieben: %s (%d Events)", output_path, len(events))
    return len(events)
