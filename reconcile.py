"""event-archive-reconciler – CLI zum Abgleich, Loeschen und Import von Event-Archiven."""

import argparse
import json
import logging
import sys
from pathlib import Path

from reconciler import ImportConfig, OperationConfig, OperationResult, PurgeConfig
from reconciler.config import load_config, load_resolutions
from reconciler.errors import ReconcileError
from reconciler.operations import analyze, import_archive, purge, rollback_import
from reconciler.reporter import (
    print_analysis,
    print_summary,
    write_csv_report,
    write_html_report,
)
from reconciler.sinks import DirectorySink
from reconciler.store import MemoryStore
from reconciler.writer import export_store


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        description='Abgleich von Event-Archiven (ZIP) gegen den Live-Datenbestand.',
        prog='reconcile.py',
    )
    sub = parser.add_subparsers(dest='command', required=True)

    def add_store(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            '--store', required=True, type=Path,
            help='Pfad zum Live-Datenbestand (JSON-Snapshot)',
        )

    def add_archive(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            '--archive', required=True, type=Path,
            help='Pfad zum Event-Archiv (ZIP)',
        )

    p_analyze = sub.add_parser('analyze', help='Archiv pruefen und Treffer anzeigen')
    add_archive(p_analyze)
    add_store(p_analyze)
    p_analyze.add_argument(
        '--output', type=Path,
        help='Pfad fuer den Treffer-Report (CSV)',
    )
    p_analyze.add_argument(
        '--html', action='store_true',
        help='Zusaetzlich einen HTML-Report erzeugen (benoetigt --output)',
    )
    p_analyze.add_argument(
        '--summary', action='store_true',
        help='Zusammenfassung auf stdout ausgeben',
    )
    p_analyze.add_argument(
        '--validate-manifest', action='store_true',
        help='Manifest-Version und Pruefsummen erzwingen',
    )

    for name, help_text in (
        ('purge', 'Im Archiv gefundene Live-Events loeschen'),
        ('import', 'Archiv-Events in den Live-Datenbestand importieren'),
    ):
        p = sub.add_parser(name, help=help_text)
        add_archive(p)
        add_store(p)
        p.add_argument(
            '--config', type=Path,
            help='YAML-Konfiguration der Operation',
        )
        p.add_argument(
            '--dry-run', action='store_true',
            help='Testlauf ohne Aenderungen (ueberschreibt die Konfiguration)',
        )
        p.add_argument(
            '--backup-dir', type=Path,
            help='Verzeichnis fuer Backups vor der Operation',
        )
        p.add_argument(
            '--result', type=Path,
            help='Ergebnis zusaetzlich als JSON schreiben',
        )
        p.add_argument(
            '--html', type=Path,
            help='Ergebnis zusaetzlich als HTML-Report schreiben',
        )

    sub.choices['purge'].add_argument(
        '--yes', action='store_true',
        help='Loeschen ohne Rueckfrage bestaetigen',
    )
    sub.choices['import'].add_argument(
        '--resolutions', type=Path,
        help='YAML mit Konfliktaufloesungen (Konflikt- oder Event-ID -> skip/overwrite/rename/merge)',
    )
    sub.choices['import'].add_argument(
        '--schedule-dir', type=Path,
        help='Zielverzeichnis fuer Zeitplan-Dateien aus dem Archiv',
    )

    p_rollback = sub.add_parser('rollback', help='Durch einen Import angelegte Events loeschen')
    add_store(p_rollback)
    p_rollback.add_argument(
        '--ids', required=True, type=Path,
        help='Ergebnis-JSON eines Imports oder Textdatei mit einer ID pro Zeile',
    )
    p_rollback.add_argument(
        '--dry-run', action='store_true',
        help='Testlauf ohne Aenderungen',
    )

    p_export = sub.add_parser('export', help='Live-Datenbestand als Archiv exportieren')
    add_store(p_export)
    p_export.add_argument(
        '--output', required=True, type=Path,
        help='Pfad fuer das Archiv (ZIP)',
    )
    p_export.add_argument(
        '--no-manifest', action='store_true',
        help='Kein manifest.json mit Pruefsummen erzeugen',
    )
    return parser


def _load_operation_config(args: argparse.Namespace) -> OperationConfig:
    if args.config:
        config = load_config(args.config, args.command)
    else:
        config = ImportConfig() if args.command == 'import' else PurgeConfig()
        # CLI runs are real unless --dry-run is given
        config.dry_run = False
    if args.dry_run:
        config.dry_run = True
    return config


def _read_ids(path: Path) -> list[str]:
    text = path.read_text(encoding='utf-8')
    if path.suffix == '.json':
        data = json.loads(text)
        return [str(i) for i in (data.get('createdIds', []) if isinstance(data, dict) else data)]
    return [line.strip() for line in text.splitlines() if line.strip()]


def _finish(result: OperationResult, args: argparse.Namespace, store: MemoryStore) -> int:
    if not getattr(args, 'dry_run', False) and result.chunks_committed:
        store.save(args.store)
    title = args.archive.name if getattr(args, 'archive', None) else args.ids.name
    print_summary(result, title)
    if getattr(args, 'result', None):
        args.result.parent.mkdir(parents=True, exist_ok=True)
        args.result.write_text(json.dumps(result.to_dict(), indent=2, ensure_ascii=False),
                               encoding='utf-8')
        logging.info("Ergebnis geschrieben: %s", args.result)
    if getattr(args, 'html', None):
        write_html_report([], args.html, title, result=result)
    return 0 if result.success else 1


def run(args: argparse.Namespace) -> int:
    """Execute one sub-command. Returns the process exit code."""
    store = MemoryStore.load(args.store)

    if args.command == 'export':
        export_store(store, args.output, include_manifest=not args.no_manifest)
        return 0

    if args.command == 'rollback':
        config = OperationConfig(dry_run=args.dry_run)
        return _finish(rollback_import(_read_ids(args.ids), store, config), args, store)

    data = args.archive.read_bytes()

    if args.command == 'analyze':
        outcome = analyze(data, store, validate_manifest=args.validate_manifest)
        if args.output:
            write_csv_report(outcome.matches, args.output)
            if args.html:
                write_html_report(
                    outcome.matches, args.output.with_suffix('.html'),
                    args.archive.name, stats=outcome.analysis,
                )
        if args.summary or not args.output:
            print_analysis(outcome.analysis, outcome.matches, args.archive.name)
        return 0

    config = _load_operation_config(args)
    backup_sink = DirectorySink(args.backup_dir) if args.backup_dir else None

    if args.command == 'purge':
        result = purge(data, config, store, backup_sink=backup_sink, confirmed=args.yes)
    else:
        resolutions = load_resolutions(args.resolutions) if args.resolutions else None
        file_sink = DirectorySink(args.schedule_dir) if args.schedule_dir else None
        result = import_archive(
            data, config, store,
            resolutions=resolutions, backup_sink=backup_sink, file_sink=file_sink,
        )
    return _finish(result, args, store)


def main() -> None:
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)s: %(message)s',
    )

    parser = build_parser()
    args = parser.parse_args()

    if args.command == 'analyze' and args.html and not args.output:
        parser.error('--html erfordert --output.')

    try:
        sys.exit(run(args))
    except ReconcileError as exc:
        for problem in exc.problems:
            logging.error("  - %s", problem)
        parser.exit(1, f"Fehler: {exc}\n")
    except FileNotFoundError as exc:
        parser.exit(1, f"Datei nicht gefunden: {exc.filename}\n")


if __name__ == '__main__':
    main()
