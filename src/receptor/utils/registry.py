"""Local results registry: one JSON record per processed document.

Processing never reads the registry back; it is a write-mostly log that the
CLI fills with ``--save`` and can list afterwards.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from filelock import FileLock

from receptor import config as _config

logger = logging.getLogger(__name__)


def _registry_path() -> Path:
    return _config.get_data_dir() / "results.json"


def _backup_corrupt(path: Path) -> Path:
    """Rename a corrupt file to a timestamped backup before it gets overwritten."""
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    backup = path.with_name(f"{path.name}.corrupt.{ts}")
    path.rename(backup)
    logger.warning("Corrupt file backed up: %s → %s", path, backup)
    return backup


@contextmanager
def _locked() -> Iterator[None]:
    """Hold an exclusive file lock during registry read-modify-write."""
    rp = _registry_path()
    rp.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(rp.with_suffix(".lock"))
    with lock:
        yield


def _load() -> list[dict[str, Any]]:
    rp = _registry_path()
    if not rp.exists():
        return []
    try:
        return json.loads(rp.read_text())
    except (json.JSONDecodeError, ValueError):
        _backup_corrupt(rp)
        return []


def _save(entries: list[dict[str, Any]]) -> None:
    rp = _registry_path()
    rp.parent.mkdir(parents=True, exist_ok=True)
    tmp = rp.with_suffix(".tmp")
    tmp.write_text(json.dumps(entries, indent=2, ensure_ascii=False) + "\n")
    os.replace(tmp, rp)


def _key(record: dict[str, Any]) -> tuple[str | None, str | None]:
    draft = record.get("draft") or {}
    return draft.get("supplier_tax_id"), draft.get("document_number")


def add_result(record: dict[str, Any]) -> dict[str, Any]:
    """Store an outcome record, replacing an earlier one for the same invoice.

    Records without a draft (failed extractions) are keyed by filename.
    """
    entry = {**record, "saved_at": datetime.now(UTC).isoformat(timespec="seconds")}
    supplier, number = _key(record)

    with _locked():
        entries = _load()
        if number:
            entries = [e for e in entries if _key(e) != (supplier, number)]
        else:
            entries = [
                e
                for e in entries
                if e.get("draft") or e.get("filename") != record.get("filename")
            ]
        entries.append(entry)
        _save(entries)
    return entry


def list_results(status: str | None = None) -> list[dict[str, Any]]:
    """Return all stored records, optionally filtered by status."""
    with _locked():
        entries = _load()
    if status:
        entries = [e for e in entries if e.get("status") == status]
    return entries


def find_result(document_number: str, supplier_tax_id: str | None = None) -> dict[str, Any] | None:
    """Look up a stored record by document number (and supplier NIT)."""
    with _locked():
        entries = _load()
    for e in entries:
        supplier, number = _key(e)
        if number == document_number and (
            supplier_tax_id is None or supplier == supplier_tax_id
        ):
            return e
    return None
