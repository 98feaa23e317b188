"""
Shipment Configuration Schema.

Defines the structure and sensible defaults for inbound shipment and
landed-cost settings.  Actual values are loaded from the YAML settings
file at runtime (see ``wms_config``).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Self

from wms_engines.allocation import AllocationMethod
from wms_engines.measures import DEFAULT_VOLUMETRIC_DIVISOR
from wms_kernel.domain.values import Currency
from wms_kernel.logging_config import get_logger
from wms_modules.shipments.models import CostType, ShipmentMode

logger = get_logger("modules.shipments.config")


def _method_map(raw: dict, keys: type, label: str) -> dict[str, AllocationMethod]:
    valid = {member.value for member in keys}
    result = {}
    for key, method in raw.items():
        key = key.value if isinstance(key, keys) else str(key)
        if key not in valid:
            raise ValueError(f"Unknown {label} in allocation defaults: {key!r}")
        result[key] = AllocationMethod(method)
    return result


@dataclass
class ShipmentConfig:
    """
    Configuration schema for the shipments module.

    Override at instantiation with site-specific values:

        config = ShipmentConfig(
            mode_default_methods={"air": "by_chargeable_weight"},
            cost_type_default_methods={"duty": "by_value"},
        )
    """

    default_currency: str = "USD"

    # Dimensional-weight divisor in cm3/kg (5000 is the IATA air convention)
    volumetric_divisor: Decimal = DEFAULT_VOLUMETRIC_DIVISOR

    # Consulted for costs whose method is "default", cost type first
    cost_type_default_methods: dict[str, AllocationMethod] = field(default_factory=dict)
    mode_default_methods: dict[str, AllocationMethod] = field(default_factory=dict)

    # Lines may exceed the open quantity of their PO line (warning only)
    allow_over_ship: bool = True

    def __post_init__(self):
        Currency(self.default_currency)
        if isinstance(self.volumetric_divisor, float):
            raise TypeError("volumetric_divisor must be Decimal, int or str, not float")
        self.volumetric_divisor = Decimal(str(self.volumetric_divisor))
        if self.volumetric_divisor <= 0:
            raise ValueError(f"volumetric_divisor must be positive: {self.volumetric_divisor}")
        self.cost_type_default_methods = _method_map(
            self.cost_type_default_methods, CostType, "cost type"
        )
        self.mode_default_methods = _method_map(self.mode_default_methods, ShipmentMode, "mode")

        logger.info(
            "shipment_config_initialized",
            extra={
                "default_currency": self.default_currency,
                "volumetric_divisor": str(self.volumetric_divisor),
                "cost_type_defaults": {k: v.value for k, v in self.cost_type_default_methods.items()},
                "mode_defaults": {k: v.value for k, v in self.mode_default_methods.items()},
                "allow_over_ship": self.allow_over_ship,
            },
        )

    def mode_default(self, mode) -> AllocationMethod | None:
        if mode is None:
            return None
        key = mode.value if isinstance(mode, ShipmentMode) else str(mode)
        return self.mode_default_methods.get(key)

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with standard defaults."""
        logger.info("shipment_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. a YAML section)."""
        logger.info(
            "shipment_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
