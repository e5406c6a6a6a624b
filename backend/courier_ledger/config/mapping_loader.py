"""
Utilities for loading the courier result-sheet vocabulary.
"""
from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "import_mappings.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "columns": {
        "order_reference": ["nroreferencia", "referencia", "order_number", "reference"],
        "delivery_outcome": ["estado_entrega", "estado", "delivery_status", "outcome"],
        "amount_collected": ["monto_cobrado", "cobrado", "amount_collected"],
        "failure_reason": ["motivo_no_entrega", "motivo", "failure_reason"],
        "courier_notes": ["observaciones", "notas", "notes", "courier_notes"],
    },
    "outcomes": {
        "delivered": ["ENTREGADO", "DELIVERED"],
        "failed": ["NO ENTREGADO", "NOT_DELIVERED", "RECHAZADO", "REJECTED", "FAILED"],
        "returned": ["DEVUELTO", "RETURNED"],
    },
    "failure_reasons": {},
}


def _slugify(value: Optional[str]) -> str:
    if not value:
        return ""
    return re.sub(r"[^a-z0-9]+", "", value.lower())


@lru_cache()
def load_mapping_config() -> Dict[str, Any]:
    if not CONFIG_PATH.exists():
        return DEFAULT_CONFIG
    with open(CONFIG_PATH, "r", encoding="utf-8") as fh:
        loaded = yaml.safe_load(fh) or {}
    config = dict(DEFAULT_CONFIG)
    config.update({k: v for k, v in loaded.items() if v})
    return config


def get_column_aliases() -> Dict[str, List[str]]:
    """target field -> slugified header aliases"""
    columns = load_mapping_config().get("columns", {})
    return {field: [_slugify(alias) for alias in aliases] for field, aliases in columns.items()}


def match_column(header: str) -> Optional[str]:
    """Return the import field a sheet header maps to, if any."""
    slug = _slugify(header)
    if not slug:
        return None
    for field, aliases in get_column_aliases().items():
        if slug in aliases or slug == _slugify(field):
            return field
    return None


def resolve_outcome(value: Optional[str]) -> Optional[str]:
    """Map a courier's free-text status (ENTREGADO, RECHAZADO, ...) to an outcome."""
    if value is None:
        return None
    text = str(value).strip().upper().replace("_", " ")
    if not text:
        return None
    for outcome, aliases in load_mapping_config().get("outcomes", {}).items():
        if outcome.upper() == text:
            return outcome
        for alias in aliases:
            if alias.upper().replace("_", " ") == text:
                return outcome
    return None


def resolve_failure_reason(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().upper()
    if not text:
        return None
    for reason, keywords in load_mapping_config().get("failure_reasons", {}).items():
        if text == reason.upper() or any(keyword.upper() in text for keyword in keywords):
            return reason
    return "other"
