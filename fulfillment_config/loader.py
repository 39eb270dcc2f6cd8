"""
Configuration Loader (``fulfillment_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into a frozen
``FulfillmentConfig``.  Runtime callers go through
``fulfillment_config.get_active_config()``; this module is the parsing
step underneath it and is used directly by tests.

Invariants enforced
-------------------
* Unknown keys are rejected rather than ignored, so a misspelt setting
  never silently falls back to its default.
* Caps are positive integers; the exception prefix is non-empty.
* ``compute_checksum`` is deterministic for equal configurations.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shape, unknown key or bad value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from fulfillment_config.schema import FulfillmentConfig

_KNOWN_KEYS = frozenset(f.name for f in fields(FulfillmentConfig))
_POSITIVE_INT_KEYS = (
    "version",
    "max_active_orders_per_picker",
    "max_active_orders_per_packer",
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its mapping (empty file -> {})."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def parse_config(data: dict[str, Any]) -> FulfillmentConfig:
    """Validate a raw mapping and build a FulfillmentConfig."""
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {unknown}")

    for key in _POSITIVE_INT_KEYS:
        if key in data:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{key} must be a positive integer, got {value!r}")

    if "revalidate_on_backorder_release" in data and not isinstance(
        data["revalidate_on_backorder_release"], bool
    ):
        raise ValueError("revalidate_on_backorder_release must be true or false")

    for key in ("config_id", "exception_id_prefix"):
        if key in data and not (isinstance(data[key], str) and data[key].strip()):
            raise ValueError(f"{key} must be a non-empty string")

    return FulfillmentConfig(**data)


def load_config(path: Path | str) -> FulfillmentConfig:
    """Load and validate one configuration file."""
    return parse_config(load_yaml_file(Path(path)))


def compute_checksum(config: FulfillmentConfig | dict[str, Any]) -> str:
    """
    SHA-256 of the canonical JSON serialization.

    Identical settings always produce identical checksums regardless of key
    order in the source file.
    """
    data = config.to_dict() if isinstance(config, FulfillmentConfig) else config
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
