"""Destinations for pre-operation backups and ancillary archive files."""

import json
import logging
from pathlib import Path
from typing import Any, Protocol

log = logging.getLogger(__name__)


class BackupSink(Protocol):
    def save(self, name: str, payload: dict[str, Any]) -> str: ...


class FileSink(Protocol):
    def store(self, name: str, data: bytes) -> str: ...


class DirectorySink:
    """Write backups (JSON) and ancillary files (raw bytes) below a directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _target(self, name: str) -> Path:
        target = (self.root / name).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise ValueError(f"Pfad ausserhalb des Zielverzeichnisses: {name}")
        target.parent.mkdir(parents=True, exist_ok=True)
        return target

    def save(self, name: str, payload: dict[str, Any]) -> str:
        target = self._target(name)
        target.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding='utf-8')
        log.info("Backup geschrieben: %s", target)
        return str(target)

    def store(self, name: str, data: bytes) -> str:
        target = self._target(name)
        target.write_bytes(data)
        return str(target)
