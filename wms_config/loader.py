"""
Settings Loader (``wms_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses its sections into the module
configuration dataclasses (``PurchasingConfig``, ``ShipmentConfig``).
Callers go through ``wms_config.load_settings()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Imports the module config
schemas; never imported by ``wms_kernel`` or ``wms_engines``.

Invariants enforced
-------------------
* Unknown sections and unknown keys are rejected, never ignored.
* ``compute_checksum`` produces a deterministic SHA-256 of the parsed
  content, so reformatting the file does not change it.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from wms_kernel.exceptions import ConfigurationError, InvalidCurrencyError
from wms_modules.purchasing.config import PurchasingConfig
from wms_modules.shipments.config import ShipmentConfig

SECTIONS: dict[str, type] = {
    "purchasing": PurchasingConfig,
    "shipments": ShipmentConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_section(source: str, name: str, data: Any):
    """
    Build the config dataclass for one section.

    A missing or empty section yields the defaults.
    """
    schema = SECTIONS[name]
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(source, f"section '{name}' must be a mapping")

    known = {f.name for f in dataclasses.fields(schema)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(source, f"unknown keys in '{name}': {unknown}")

    try:
        return schema.from_dict(data)
    except (TypeError, ValueError, InvalidCurrencyError) as exc:
        raise ConfigurationError(source, f"section '{name}': {exc}") from exc


def parse_settings(source: str, data: dict[str, Any]) -> dict[str, Any]:
    """Parse every section; unknown top-level sections are rejected."""
    unknown = sorted(set(data) - set(SECTIONS))
    if unknown:
        raise ConfigurationError(source, f"unknown sections: {unknown}")
    return {name: parse_section(source, name, data.get(name)) for name in SECTIONS}
