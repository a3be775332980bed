"""Versioned reference-data snapshots and their time-bounded cache."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from receptor.config import get_reference_ttl, load_reference_data
from receptor.models.reference import (
    AccountDefinition,
    ClassificationSettings,
    ReferenceSnapshot,
    TaxTables,
)

logger = logging.getLogger(__name__)


def load_snapshot(data: Mapping[str, Any], loaded_at: float = 0.0) -> ReferenceSnapshot:
    """Build an immutable snapshot from a reference-data mapping.

    Raises ValueError when a required table is missing.
    """
    if "tax_tables" not in data:
        raise ValueError("Datos de referencia sin 'tax_tables'")
    if not data.get("accounts"):
        raise ValueError("Datos de referencia sin 'accounts'")
    tables = TaxTables.from_dict(data["tax_tables"])
    return ReferenceSnapshot(
        version=str(data.get("version") or tables.version),
        accounts=tuple(AccountDefinition.from_dict(a) for a in data["accounts"]),
        tax_tables=tables,
        classification=ClassificationSettings.from_dict(data.get("classification") or {}),
        loaded_at=loaded_at,
    )


def load_default_snapshot() -> ReferenceSnapshot:
    """Snapshot of the user's reference.yaml, or of the bundled tables."""
    return load_snapshot(load_reference_data(), loaded_at=time.time())


class ReferenceDataCache:
    """Hold one snapshot for ``ttl`` seconds, reloading it on demand.

    ``get()`` always returns a complete snapshot: a refresh builds the new
    one first and swaps the reference under the lock.
    """

    def __init__(
        self,
        loader: Callable[[], ReferenceSnapshot] = load_default_snapshot,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = get_reference_ttl() if ttl is None else ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: ReferenceSnapshot | None = None
        self._expires_at = 0.0

    def get(self) -> ReferenceSnapshot:
        snapshot = self._snapshot
        if snapshot is not None and self._clock() < self._expires_at:
            return snapshot
        return self.refresh()

    def refresh(self) -> ReferenceSnapshot:
        """Load a new snapshot and replace the cached one."""
        with self._lock:
            snapshot = self._loader()
            self._snapshot = snapshot
            self._expires_at = self._clock() + self._ttl
        logger.debug("Reference data %s loaded (ttl %.0fs)", snapshot.version, self._ttl)
        return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._expires_at = 0.0
