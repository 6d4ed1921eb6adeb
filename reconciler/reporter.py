"""Summaries and reports for matches and operation results (CSV, HTML, stdout)."""

import csv
import logging
import time
from collections import Counter
from pathlib import Path
from typing import Iterable, NamedTuple

from jinja2 import Environment, FileSystemLoader

from reconciler import ArchiveStats, MatchResult, OperationResult, Summary

log = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / 'templates'

CSV_COLUMNS = [
    'Live_ID',
    'Live_Name',
    'Live_Date',
    'Club',
    'Zone',
    'Status',
    'Archive_ID',
    'Archive_Name',
    'Archive_Date',
    'Match_Type',
    'Confidence',
]


class SummaryRow(NamedTuple):
    """Display names of one processed record."""

    zone: str
    club: str
    status: str
    match_type: str


def summarize(rows: Iterable[SummaryRow]) -> Summary:
    """Count processed records by zone, club, status and match type."""
    by_zone: Counter[str] = Counter()
    by_club: Counter[str] = Counter()
    by_status: Counter[str] = Counter()
    by_match_type: Counter[str] = Counter()
    for row in rows:
        by_zone[row.zone] += 1
        by_club[row.club] += 1
        by_status[row.status] += 1
        by_match_type[row.match_type] += 1
    return Summary(
        by_zone=dict(by_zone),
        by_club=dict(by_club),
        by_status=dict(by_status),
        by_match_type=dict(by_match_type),
    )


def summarize_matches(matches: Iterable[MatchResult]) -> Summary:
    return summarize(SummaryRow(m.zone, m.club, m.status, m.match_type) for m in matches)


def start_timer() -> float:
    return time.monotonic()


def elapsed_ms(started: float) -> int:
    """Milliseconds since ``started`` (a ``start_timer`` value)."""
    return int((time.monotonic() - started) * 1000)


def _match_to_row(match: MatchResult) -> dict:
    """Convert a MatchResult to a flat dict for CSV/HTML output."""
    archive = match.archive_record
    return {
        'Live_ID': match.live_id,
        'Live_Name': match.name,
        'Live_Date': match.date,
        'Club': match.club,
        'Zone': match.zone,
        'Status': match.status,
        'Archive_ID': archive.id,
        'Archive_Name': archive.name,
        'Archive_Date': archive.date,
        'Match_Type': match.match_type,
        'Confidence': str(match.confidence),
    }


def write_csv_report(matches: list[MatchResult], output_path: Path) -> None:
    """Write matches as a CSV report.

    Uses UTF-8 with BOM (utf-8-sig) and semicolon delimiter for
    compatibility with German Excel.

    Args:
        matches: Matches to report.
        output_path: Path for the output CSV file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', newline='', encoding='utf-8-sig') as f:
        writer = csv.DictWriter(
            f, fieldnames=CSV_COLUMNS, delimiter=';', extrasaction='ignore',
        )
        writer.writeheader()
        for match in matches:
            writer.writerow(_match_to_row(match))

    log.info("CSV-Report geschrieben: %s (%d Zeilen)", output_path, len(matches))


def write_html_report(
    matches: list[MatchResult],
    output_path: Path,
    title: str = '',
    result: OperationResult | None = None,
    stats: ArchiveStats | None = None,
) -> None:
    """Write matches (and optionally an operation result) as HTML via Jinja2.

    Args:
        matches: Matches to list.
        output_path: Path for the output HTML file.
        title: Report title, usually the archive file name.
        result: Outcome of a purge/import run, if any.
        stats: Archive statistics, if any.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=True,
    )
    template = env.get_template('report.html')

    html = template.render(
        title=title,
        rows=[_match_to_row(m) for m in matches],
        columns=CSV_COLUMNS,
        summary=(result.summary if result else summarize_matches(matches)).to_dict(),
        result=result,
        stats=stats,
    )

    output_path.write_text(html, encoding='utf-8')
    log.info("HTML-Report geschrieben: %s", output_path)


def print_analysis(stats: ArchiveStats, matches: list[MatchResult], title: str = '') -> None:
    """Print archive statistics and match counts to stdout."""
    counts = Counter(m.match_type for m in matches)

    print(f"\n=== Archiv-Analyse: {title} ===")
    print(f"Events im Archiv:          {stats.total_events:>5}")
    print(f"Zeitraum:                  {stats.date_range.start or '-'} bis {stats.date_range.end or '-'}")
    print(f"Manifest vorhanden:        {'ja' if stats.has_manifest else 'nein'}"
          f" (Version {stats.manifest_version})")
    print(f"Pruefsummen gueltig:       {'ja' if stats.checksum_valid else 'nein'}")
    print("---")
    print(f"Gepaarte Live-Events:      {len(matches):>5}")
    print(f"  - exakt:                 {counts['exact']:>5}")
    print(f"  - nah:                   {counts['near']:>5}")
    print(f"  - teilweise:             {counts['partial']:>5}")
    print()


def print_summary(result: OperationResult, title: str = '') -> None:
    """Print a summary of an operation result to stdout.

    Args:
        result: Outcome of a purge, import or rollback run.
        title: Name of the archive or id file.
    """
    verb = 'Importiert' if result.operation == 'import' else 'Geloescht'

    print(f"\n=== {result.operation.capitalize()}-Report: {title} ===")
    print(f"Erfolgreich:               {'ja' if result.success else 'nein':>5}")
    print(f"Erfasst:                   {result.matched_or_imported:>5}")
    print(f"{verb + ':':<27}{result.deleted_or_created:>5}")
    print(f"Uebersprungen:             {result.skipped:>5}")
    print(f"Chunks geschrieben:        {result.chunks_committed:>5}")
    if result.operation == 'import':
        print(f"Zeitplaene hochgeladen:    {result.schedules_uploaded:>5}")
    if result.backup_created:
        print(f"Backup:                    {result.backup_created}")
    print(f"Dauer (ms):                {result.elapsed_ms:>5}")
    for heading, counts in (
        ('Nach Zone', result.summary.by_zone),
        ('Nach Club', result.summary.by_club),
        ('Nach Status', result.summary.by_status),
        ('Nach Match-Typ', result.summary.by_match_type),
    ):
        if counts:
            print(f"--- {heading}")
            for key, count in sorted(counts.items()):
                print(f"  - {key:<24}{count:>5}")
    for warning in result.warnings:
        print(f"WARNUNG: {warning}")
    for error in result.errors:
        print(f"FEHLER: {error}")
    print()
