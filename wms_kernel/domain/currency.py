"""
ISO 4217 currencies accepted on purchase orders and shipment costs.

Only the exponent matters to the kernel: it fixes how many cents make one
major unit, which in turn fixes how amounts entered as "12.34" become
integer cents.  Codes outside the table are rejected by ``Currency``.
"""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    decimal_places: int
    name: str

    @property
    def minor_units_per_major(self) -> int:
        return 10 ** self.decimal_places


def _table(places: int, names: dict[str, str]) -> dict[str, CurrencyInfo]:
    return {code: CurrencyInfo(code, places, name) for code, name in names.items()}


class CurrencyRegistry:
    """Lookup by code; input is upper-cased and stripped before matching."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        **_table(2, {
            "USD": "US Dollar",
            "CAD": "Canadian Dollar",
            "MXN": "Mexican Peso",
            "BRL": "Brazilian Real",
            "EUR": "Euro",
            "GBP": "Pound Sterling",
            "CHF": "Swiss Franc",
            "SEK": "Swedish Krona",
            "NOK": "Norwegian Krone",
            "DKK": "Danish Krone",
            "PLN": "Polish Zloty",
            "TRY": "Turkish Lira",
            "ZAR": "South African Rand",
            "AED": "UAE Dirham",
            "AUD": "Australian Dollar",
            "NZD": "New Zealand Dollar",
            # Asian supplier currencies
            "CNY": "Chinese Yuan",
            "HKD": "Hong Kong Dollar",
            "TWD": "New Taiwan Dollar",
            "INR": "Indian Rupee",
            "SGD": "Singapore Dollar",
            "THB": "Thai Baht",
            "MYR": "Malaysian Ringgit",
            "IDR": "Indonesian Rupiah",
            "PHP": "Philippine Peso",
        }),
        **_table(0, {
            "JPY": "Japanese Yen",
            "KRW": "South Korean Won",
            "VND": "Vietnamese Dong",
            "CLP": "Chilean Peso",
            "ISK": "Icelandic Krona",
        }),
        **_table(3, {
            "BHD": "Bahraini Dinar",
            "KWD": "Kuwaiti Dinar",
            "OMR": "Omani Rial",
            "JOD": "Jordanian Dinar",
        }),
    }

    @staticmethod
    def _key(code: object) -> str | None:
        if not isinstance(code, str) or not code.strip():
            return None
        return code.strip().upper()

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        key = cls._key(code)
        return cls._CURRENCIES.get(key) if key else None

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return cls.get_info(code) is not None

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls.get_info(code)
        if info is None:
            raise ValueError(f"Unknown currency code: {code!r}")
        return info.decimal_places
