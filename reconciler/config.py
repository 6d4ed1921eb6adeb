"""YAML loading and validation of purge/import configs and conflict resolutions.

Example purge config::

    dry_run: false
    create_backup: true
    filters:
      zone: [North]
      date_range: {start: 2025-01-01, end: 2025-12-31}
"""

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from reconciler import RESOLUTIONS, DateRange, Filters, ImportConfig, OperationConfig, PurgeConfig
from reconciler.errors import ValidationError

_BOOL_KEYS = frozenset({
    'dry_run',
    'require_confirmation',
    'create_backup',
    'skip_ancillary_files',
    'allow_duplicates',
    'validate_manifest',
})
_FILTER_LIST_KEYS = ('zone', 'club', 'event_type')
CONFIG_KEYS = frozenset(f.name for f in fields(OperationConfig))


def _load_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding='utf-8'))
    except yaml.YAMLError as exc:
        raise ValidationError(f"{path}: ungueltiges YAML ({exc})", [str(path)]) from exc


def _as_str_list(key: str, value: Any, problems: list[str]) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    problems.append(f"filters.{key}: Liste erwartet")
    return []


def _optional_date(value: Any) -> str | None:
    # YAML turns unquoted 2025-01-01 into a date object
    return str(value) if value not in (None, '') else None


def _parse_filters(data: Any, problems: list[str]) -> Filters:
    if data is None:
        return Filters()
    if not isinstance(data, dict):
        problems.append("filters: Mapping erwartet")
        return Filters()
    unknown = set(data) - set(_FILTER_LIST_KEYS) - {'date_range'}
    problems.extend(f"filters.{key}: unbekannter Schluessel" for key in sorted(unknown))
    date_range = data.get('date_range') or {}
    if not isinstance(date_range, dict):
        problems.append("filters.date_range: Mapping erwartet")
        date_range = {}
    return Filters(
        zone=_as_str_list('zone', data.get('zone'), problems),
        club=_as_str_list('club', data.get('club'), problems),
        event_type=_as_str_list('event_type', data.get('event_type'), problems),
        date_range=DateRange(
            start=_optional_date(date_range.get('start')),
            end=_optional_date(date_range.get('end')),
        ),
    )


def config_from_dict(data: dict[str, Any] | None, kind: str = 'purge') -> OperationConfig:
    """Validate a mapping into a PurgeConfig or ImportConfig.

    Args:
        data: Parsed config; missing keys take the variant's defaults.
        kind: ``'purge'`` or ``'import'``.

    Raises:
        ValidationError: Unknown keys or wrongly typed values; lists all.
    """
    cls = ImportConfig if kind == 'import' else PurgeConfig
    data = data or {}
    if not isinstance(data, dict):
        raise ValidationError("Konfiguration muss ein Mapping sein", ['<root>'])

    problems: list[str] = []
    problems.extend(f"{key}: unbekannter Schluessel" for key in sorted(set(data) - CONFIG_KEYS))

    kwargs: dict[str, Any] = {}
    for key in _BOOL_KEYS & set(data):
        if isinstance(data[key], bool):
            kwargs[key] = data[key]
        else:
            problems.append(f"{key}: true/false erwartet")

    if 'max_batch_size' in data and data['max_batch_size'] is not None:
        value = data['max_batch_size']
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            kwargs['max_batch_size'] = value
        else:
            problems.append("max_batch_size: positive Ganzzahl erwartet")

    kwargs['filters'] = _parse_filters(data.get('filters'), problems)

    if problems:
        raise ValidationError(f"Ungueltige Konfiguration: {'; '.join(problems)}", problems)
    return cls(**kwargs)


def load_config(path: str | Path, kind: str = 'purge') -> OperationConfig:
    """Load a purge/import config from a YAML file."""
    path = Path(path)
    return config_from_dict(_load_yaml(path), kind)


def load_resolutions(path: str | Path) -> dict[str, str]:
    """Load conflict resolutions from YAML.

    The file maps conflict ids or archive event ids to one of skip,
    overwrite, rename, merge; an optional ``default`` key sets the fallback.

    Raises:
        ValidationError: If the file is not a mapping or holds unknown values.
    """
    path = Path(path)
    data = _load_yaml(path) or {}
    if not isinstance(data, dict):
        raise ValidationError(f"{path}: Mapping erwartet", [str(path)])
    resolutions = {str(k): str(v) for k, v in data.items()}
    invalid = [f"{k}={v}" for k, v in resolutions.items() if v not in RESOLUTIONS]
    if invalid:
        raise ValidationError(f"Ungueltige Konfliktaufloesung: {', '.join(invalid)}", invalid)
    return resolutions
