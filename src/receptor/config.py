from __future__ import annotations

import os
from decimal import Decimal
from importlib.resources import files
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "receptor-dian"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on env vars from .env itself.

    Only checks sources available before .env is loaded (env var set in the
    shell, dev layout, an existing platformdirs directory).
    """
    from_env = os.environ.get("RECEPTOR_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def _resolve_dir(env_var: str, default_subdir: str, kind: str) -> Path:
    """Resolve a directory from env var, repo layout, or platform default.

    Priority: 1) env var, 2) dev repo layout, 3) platformdirs user directory.
    """
    from_env = os.environ.get(env_var)
    if from_env:
        return Path(from_env)
    # Development layout: src/receptor/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / default_subdir
    if candidate.is_dir():
        return candidate
    if kind == "config":
        return Path(platformdirs.user_config_dir(APP_NAME))
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_config_dir() -> Path:
    """Resolve config directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("RECEPTOR_CONFIG_DIR", "config", kind="config")


def get_data_dir() -> Path:
    """Resolve data directory. Re-evaluated on each call to pick up env changes."""
    return _resolve_dir("RECEPTOR_DATA_DIR", "data", kind="data")


UBL_NS = {
    "Invoice": "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2",
    "CreditNote": "urn:oasis:names:specification:ubl:schema:xsd:CreditNote-2",
    "DebitNote": "urn:oasis:names:specification:ubl:schema:xsd:DebitNote-2",
    "AttachedDocument": "urn:oasis:names:specification:ubl:schema:xsd:AttachedDocument-2",
}

DEFAULT_CURRENCY = "COP"

# Largest accepted |subtotal + tax - retention - total| before warning
AMOUNT_TOLERANCE = Decimal("0.01")

DEFAULT_REFERENCE_TTL = 300.0

# Uncompressed size limits for XML entries read from ZIP archives
MAX_ARCHIVE_ENTRY_SIZE = 50 * 1024 * 1024
MAX_ARCHIVE_TOTAL_SIZE = 100 * 1024 * 1024


def get_reference_ttl() -> float:
    """Seconds a reference-data snapshot stays fresh (RECEPTOR_REFERENCE_TTL)."""
    raw = os.environ.get("RECEPTOR_REFERENCE_TTL")
    if not raw:
        return DEFAULT_REFERENCE_TTL
    try:
        ttl = float(raw)
    except ValueError:
        raise ValueError(f"RECEPTOR_REFERENCE_TTL invalido: '{raw}'") from None
    if ttl < 0:
        raise ValueError("RECEPTOR_REFERENCE_TTL debe ser >= 0")
    return ttl


# --- YAML config ---


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def bundled_reference_path() -> Path:
    """Path of the reference tables shipped with the package."""
    return Path(str(files("receptor") / "data" / "reference.yaml"))


def reference_data_path() -> Path:
    """Return config/reference.yaml when the user has one, else the bundled tables."""
    user = get_config_dir() / "reference.yaml"
    if user.is_file():
        return user
    return bundled_reference_path()


def load_reference_data() -> dict:
    """Load the raw reference-data mapping (accounts, tax tables, settings)."""
    return load_yaml(reference_data_path())


def load_entity(tax_id: str) -> dict | None:
    """Load a known entity from config/entities/{tax_id}.yaml, or None if absent."""
    path = get_config_dir() / "entities" / f"{tax_id}.yaml"
    if not path.is_file():
        return None
    return load_yaml(path)
