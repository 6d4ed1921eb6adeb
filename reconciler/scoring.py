"""String similarity and confidence scoring for event matches."""

import math
from datetime import datetime

from rapidfuzz.distance import Levenshtein

from reconciler import EventRecord, MatchType

WEIGHTS: dict[str, float] = {
    'id': 40,
    'name': 25,
    'date_exact': 20,
    'date_within_day': 15,
    'date_within_week': 10,
    'club': 10,
    'event_type': 5,
}

# Lower bounds of each match type (0–100 scale)
EXACT_THRESHOLD = 80
NEAR_THRESHOLD = 60
DISCARD_THRESHOLD = 40

_SECONDS_PER_DAY = 60 * 60 * 24


def similarity(a: str, b: str) -> float:
    """Return the normalized Levenshtein similarity of two names.

    Case-insensitive. Two empty strings are identical (1.0).

    Args:
        a: First name.
        b: Second name.

    Returns:
        ``1 - distance / max(len(a), len(b))`` between 0.0 and 1.0.
    """
    return Levenshtein.normalized_similarity(a.lower(), b.lower())


def parse_date(value: str) -> datetime | None:
    """Parse a ``YYYY-MM-DD`` date or ISO timestamp, None if unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def days_between(a: str, b: str) -> float | None:
    """Absolute distance in days between two dates, None if either is invalid."""
    da = parse_date(a)
    db = parse_date(b)
    if da is None or db is None:
        return None
    # Naive and aware values cannot be subtracted from each other
    if (da.tzinfo is None) != (db.tzinfo is None):
        da = da.replace(tzinfo=None)
        db = db.replace(tzinfo=None)
    return abs((da - db).total_seconds()) / _SECONDS_PER_DAY


def _same_reference(a: str | None, b: str | None) -> bool:
    # Missing or empty references never count as a match
    return bool(a) and a == b


def calculate_confidence(live: EventRecord, archive: EventRecord) -> float:
    """Calculate the weighted confidence that two records are the same event.

    Args:
        live: Record from the live store.
        archive: Record from the archive.

    Returns:
        Unrounded confidence score between 0 and 100.
    """
    score = 0.0
    if live.id == archive.id:
        score += WEIGHTS['id']

    score += similarity(live.name, archive.name) * WEIGHTS['name']

    if live.date == archive.date:
        score += WEIGHTS['date_exact']
    else:
        diff = days_between(live.date, archive.date)
        if diff is not None:
            if diff <= 1:
                score += WEIGHTS['date_within_day']
            elif diff <= 7:
                score += WEIGHTS['date_within_week']

    if _same_reference(live.club_id, archive.club_id):
        score += WEIGHTS['club']
    if _same_reference(live.event_type_id, archive.event_type_id):
        score += WEIGHTS['event_type']
    return score


def classify(confidence: float) -> MatchType | None:
    """Map a confidence score to its match type, None below the discard line."""
    if confidence >= EXACT_THRESHOLD:
        return 'exact'
    if confidence >= NEAR_THRESHOLD:
        return 'near'
    if confidence >= DISCARD_THRESHOLD:
        return 'partial'
    return None


def round_confidence(confidence: float) -> int:
    """Round half-up for display."""
    return int(math.floor(confidence + 0.5))
