"""
wms_config -- settings entrypoint.

Responsibility:
    Provides ``load_settings()``, the one way to obtain module
    configuration from a settings file.  Returns a ``Settings`` bundle
    holding a ``PurchasingConfig``, a ``ShipmentConfig`` and the checksum
    of the parsed file.

Architecture position:
    Configuration -- sits above ``wms_modules`` (it instantiates their
    config schemas) and below ``wms_services``.  The kernel and engines
    MUST NEVER import from ``wms_config``.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``ConfigurationError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful load emits a ``WMS_CONFIG_TRACE`` log entry with the
    source path and checksum, tying lifecycle behaviour to an exact
    settings version.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from wms_config.loader import compute_checksum, load_yaml_file, parse_settings
from wms_kernel.logging_config import get_logger
from wms_modules.purchasing.config import PurchasingConfig
from wms_modules.shipments.config import ShipmentConfig

logger = get_logger("config")

# Default settings file shipped with the package
DEFAULT_SETTINGS_PATH = Path(__file__).parent / "sets" / "default.yaml"


@dataclass(frozen=True)
class Settings:
    purchasing: PurchasingConfig
    shipments: ShipmentConfig
    checksum: str
    source: str


def load_settings(path: Path | str | None = None) -> Settings:
    """Load and validate a settings file (defaults to the packaged one)."""
    path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    data = load_yaml_file(path)
    sections = parse_settings(str(path), data)
    settings = Settings(
        purchasing=sections["purchasing"],
        shipments=sections["shipments"],
        checksum=compute_checksum(data),
        source=str(path),
    )
    logger.info(
        "WMS_CONFIG_TRACE",
        extra={"source": settings.source, "checksum": settings.checksum},
    )
    return settings


__all__ = ["DEFAULT_SETTINGS_PATH", "Settings", "load_settings"]
