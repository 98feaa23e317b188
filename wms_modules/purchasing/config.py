"""
Purchasing Configuration Schema.

Defines the structure and sensible defaults for purchasing settings.
Actual values are loaded from the YAML settings file at runtime
(see ``wms_config``).
"""

from dataclasses import dataclass
from typing import Self

from wms_kernel.domain.values import Currency
from wms_kernel.logging_config import get_logger
from wms_modules.purchasing.models import POStatus

logger = get_logger("modules.purchasing.config")


@dataclass
class PurchasingConfig:
    """
    Configuration schema for the purchasing module.

    Override at instantiation with site-specific values:

        config = PurchasingConfig(default_currency="EUR", allow_over_receipt=False)
    """

    default_currency: str = "USD"

    # Line edits (add/update/remove) are only accepted in these statuses
    editable_statuses: tuple[str, ...] = ("draft",)

    # Receiving may report more than the open quantity
    allow_over_receipt: bool = True

    def __post_init__(self):
        Currency(self.default_currency)
        self.editable_statuses = tuple(self.editable_statuses)
        valid = {status.value for status in POStatus}
        unknown = [s for s in self.editable_statuses if s not in valid]
        if unknown:
            raise ValueError(f"Unknown PO statuses in editable_statuses: {unknown}")
        logger.info(
            "purchasing_config_initialized",
            extra={
                "default_currency": self.default_currency,
                "editable_statuses": list(self.editable_statuses),
                "allow_over_receipt": self.allow_over_receipt,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with standard defaults."""
        logger.info("purchasing_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. a YAML section)."""
        logger.info(
            "purchasing_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
