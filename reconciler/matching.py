"""Matching engine pairing live event records with archive records."""

import logging

from reconciler import Club, EventRecord, MatchResult, Zone
from reconciler.scoring import calculate_confidence, classify, round_confidence

log = logging.getLogger(__name__)

UNKNOWN = 'Unknown'


def _build_index(items) -> dict:
    """Index records by id; the first record with a given id wins."""
    index = {}
    for item in items:
        index.setdefault(item.id, item)
    return index


def resolve_names(
    club_id: str | None,
    clubs: dict[str, Club],
    zones: dict[str, Zone],
) -> tuple[str, str]:
    """Resolve club and zone display names for a club id.

    Unresolved references render as ``'Unknown'``.

    Returns:
        Tuple of (club name, zone name).
    """
    club = clubs.get(club_id) if club_id else None
    zone = zones.get(club.zone_id) if club and club.zone_id else None
    return (club.name if club and club.name else UNKNOWN,
            zone.name if zone and zone.name else UNKNOWN)


def _best_pairing(
    live: EventRecord,
    archive_records: list[EventRecord],
) -> tuple[EventRecord, float] | None:
    """Return the archive record with the highest confidence for ``live``.

    Ties keep the earlier archive record. Pairings below the discard
    threshold are never returned.
    """
    best: tuple[EventRecord, float] | None = None
    for archive in archive_records:
        confidence = calculate_confidence(live, archive)
        if classify(confidence) is None:
            continue
        if best is None or confidence > best[1]:
            best = (archive, confidence)
    return best


def match_events(
    live_records: list[EventRecord],
    archive_records: list[EventRecord],
    clubs: list[Club],
    zones: list[Zone],
) -> list[MatchResult]:
    """Match every live record against the archive.

    Every (live, archive) pair is scored; each live record keeps at most one
    MatchResult, the one with the highest confidence.

    Args:
        live_records: Event records from the live store.
        archive_records: Event records from the archive.
        clubs: Live clubs, used to resolve display names.
        zones: Live zones, used to resolve display names.

    Returns:
        MatchResults in live-record order.
    """
    club_index = _build_index(clubs)
    zone_index = _build_index(zones)

    results: list[MatchResult] = []
    for live in live_records:
        best = _best_pairing(live, archive_records)
        if best is None:
            continue
        archive, confidence = best
        club_name, zone_name = resolve_names(live.club_id, club_index, zone_index)
        results.append(MatchResult(
            live_id=live.id,
            name=live.name,
            date=live.date[:10],
            archive_record=archive,
            live_record=live,
            confidence=round_confidence(confidence),
            match_type=classify(confidence),
            club=club_name,
            zone=zone_name,
            status=live.status,
        ))

    log.info(
        "Abgleich abgeschlossen: %d von %d Live-Events mit Archiv gepaart",
        len(results), len(live_records),
    )
    return results
