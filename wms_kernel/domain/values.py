"""
Values -- Immutable, self-validating money value objects.

Responsibility:
    Provides the value types for every monetary figure in the purchasing
    and shipment core: Currency, Money (integer minor units) and UnitCost
    (Decimal minor units, sub-cent precision allowed).  Also provides
    ``allocate_proportionally``, the single place where an amount is split
    across weights.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module. No outward dependencies except
    wms_kernel.domain.currency and wms_kernel.exceptions.

Invariants enforced:
    - Money is an ``int`` number of minor units; floats are never accepted.
    - Arithmetic never mixes currencies.
    - ``sum(allocate_proportionally(total, weights)) == total`` exactly.
    - Rounding happens only at explicit boundaries (``UnitCost.extend_rounded``,
      ``round_half_up``), always ROUND_HALF_UP.

Failure modes:
    - TypeError when a float (or bool) is passed where an amount is expected.
    - ValueError on negative weights, negative unit costs, or major-unit
      amounts finer than the currency's minor unit.
    - CurrencyMismatchError when arithmetic mixes currencies.
    - NoAllocationBasisError when a non-zero amount meets all-zero weights.

Audit relevance:
    Allocation output feeds inventory valuation.  Largest-remainder
    allocation is deterministic for identical inputs, so re-running an
    allocation reproduces the same cents on the same lines.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from fractions import Fraction
from numbers import Rational

from wms_kernel.domain.currency import CurrencyRegistry
from wms_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidCurrencyError,
    NoAllocationBasisError,
)


def _require_exact(value: object, what: str) -> None:
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"{what} must not be {type(value).__name__}: {value!r}")


def _finite_decimal(value: object, what: str) -> Decimal:
    """Parse to Decimal; NaN and infinities are rejected like unparseable input."""
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid {what}: {value!r}") from e
    if not parsed.is_finite():
        raise ValueError(f"{what} must be finite: {value!r}")
    return parsed


def round_half_up(value: Decimal | Fraction | int) -> int:
    """Round an exact number of minor units to a whole unit, half away from zero."""
    _require_exact(value, "value")
    if isinstance(value, int):
        return value
    if isinstance(value, Fraction):
        if value < 0:
            return -round_half_up(-value)
        return (2 * value.numerator + value.denominator) // (2 * value.denominator)
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - code is always uppercase and stripped of whitespace
        - code is always a known code per CurrencyRegistry
    """

    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if isinstance(self.code, str) else ""
        if not CurrencyRegistry.is_valid(normalized):
            raise InvalidCurrencyError(str(self.code))
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def minor_units_per_major(self) -> int:
        return 10 ** self.decimal_places

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


def _as_currency(currency: str | Currency) -> Currency:
    if isinstance(currency, Currency):
        return currency
    return Currency(currency)


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount held as an integer number of minor currency units.

    Contract:
        Pairs an ``int`` count of cents (or the currency's minor unit) with
        its Currency.  Python integers are unbounded, so realistic PO and
        shipment totals cannot overflow.

    Guarantees:
        - Immutable and hashable
        - ``cents`` is always an ``int`` (never float, never bool)
        - Arithmetic enforces the same-currency constraint

    Non-goals:
        - No currency conversion
        - No fractional minor units (use UnitCost for sub-cent prices)
    """

    cents: int
    currency: Currency

    def __post_init__(self) -> None:
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError(
                f"Money cents must be int, got {type(self.cents).__name__}"
            )
        object.__setattr__(self, "currency", _as_currency(self.currency))

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """
        Build Money from a major-unit amount (e.g. ``Money.of("5.00", "USD")``).

        Raises:
            TypeError: If amount is a float.
            ValueError: If amount has more precision than the currency's
                minor unit, or cannot be parsed.
        """
        _require_exact(amount, "amount")
        cur = _as_currency(currency)
        major = _finite_decimal(amount, "amount")
        minor = major * cur.minor_units_per_major
        if minor != minor.to_integral_value():
            raise ValueError(
                f"Amount {amount} is finer than the minor unit of {cur.code}"
            )
        return cls(cents=int(minor), currency=cur)

    @classmethod
    def from_cents(cls, cents: int, currency: str | Currency) -> Money:
        return cls(cents=cents, currency=_as_currency(currency))

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        """Create a zero amount in the given currency."""
        return cls(cents=0, currency=_as_currency(currency))

    @property
    def amount(self) -> Decimal:
        """The value in major units, for display."""
        return Decimal(self.cents).scaleb(-self.currency.decimal_places)

    @property
    def is_zero(self) -> bool:
        return self.cents == 0

    @property
    def is_positive(self) -> bool:
        return self.cents > 0

    @property
    def is_negative(self) -> bool:
        return self.cents < 0

    def _check_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency.code, other.currency.code)

    def add(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(cents=self.cents + other.cents, currency=self.currency)

    def subtract(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(cents=self.cents - other.cents, currency=self.currency)

    def multiply_by_quantity(self, qty: int) -> Money:
        """Exact multiplication by a whole quantity."""
        if isinstance(qty, bool) or not isinstance(qty, int):
            raise TypeError(f"qty must be int, got {type(qty).__name__}")
        return Money(cents=self.cents * qty, currency=self.currency)

    def allocate(self, weights: Sequence[Rational | Decimal | int]) -> list[Money]:
        """Split this amount across ``weights``; see ``allocate_proportionally``."""
        return allocate_proportionally(self, weights)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __neg__(self) -> Money:
        return Money(cents=-self.cents, currency=self.currency)

    def __abs__(self) -> Money:
        return Money(cents=abs(self.cents), currency=self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.cents < other.cents

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.cents <= other.cents

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.cents > other.cents

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.cents >= other.cents

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.cents}, {self.currency.code!r})"


@dataclass(frozen=True, slots=True)
class UnitCost:
    """
    Per-unit purchase price in minor units, sub-cent precision allowed.

    Contract:
        ``cents`` is a Decimal count of minor units, so ``Decimal("0.5")``
        is half a cent.  Extending by a quantity is exact; rounding to whole
        cents happens only in ``extend_rounded``.

    Guarantees:
        - ``cents`` is a non-negative Decimal (never float)
    """

    cents: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        _require_exact(self.cents, "unit cost")
        object.__setattr__(self, "cents", _finite_decimal(self.cents, "unit cost"))
        if self.cents < 0:
            raise ValueError(f"Unit cost must be non-negative: {self.cents}")
        object.__setattr__(self, "currency", _as_currency(self.currency))

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> UnitCost:
        """Build from a major-unit price (``UnitCost.of("0.05", "USD")`` is 5 cents)."""
        _require_exact(amount, "amount")
        cur = _as_currency(currency)
        major = _finite_decimal(amount, "amount")
        return cls(cents=major * cur.minor_units_per_major, currency=cur)

    @classmethod
    def from_cents(cls, cents: Decimal | str | int, currency: str | Currency) -> UnitCost:
        return cls(cents=cents, currency=_as_currency(currency))

    @property
    def is_zero(self) -> bool:
        return self.cents == 0

    def extend(self, qty: int) -> Decimal:
        """Exact extended cost in minor units (may be fractional)."""
        if isinstance(qty, bool) or not isinstance(qty, int):
            raise TypeError(f"qty must be int, got {type(qty).__name__}")
        return self.cents * qty

    def extend_rounded(self, qty: int) -> Money:
        """Extended cost rounded half-up to whole minor units."""
        return Money(cents=round_half_up(self.extend(qty)), currency=self.currency)

    def __str__(self) -> str:
        return f"{self.cents.normalize()}c {self.currency.code}"


def _to_fraction(weight: object) -> Fraction:
    _require_exact(weight, "weight")
    if isinstance(weight, Fraction):
        return weight
    if isinstance(weight, (int, Decimal, Rational)):
        return Fraction(weight)
    raise TypeError(f"weight must be a rational number, got {type(weight).__name__}")


def allocate_proportionally(
    total: Money,
    weights: Sequence[Rational | Decimal | int],
) -> list[Money]:
    """
    Split ``total`` across ``weights`` with no cent lost or gained.

    Each share is floored from the exact rational ``total * w / sum(w)``.
    The cents left over are handed out one at a time to the shares with the
    largest fractional remainder; ties go to the larger weight, then to the
    lower index.  Negative totals (credits) are split by magnitude.

    Preconditions:
        - every weight is a non-negative int, Decimal or Fraction

    Postconditions:
        - ``len(result) == len(weights)``
        - ``sum(r.cents for r in result) == total.cents``
        - a zero weight always receives zero

    Raises:
        ValueError: If any weight is negative.
        NoAllocationBasisError: If ``total`` is non-zero and every weight is
            zero (or there are no weights).
    """
    fractions = [_to_fraction(w) for w in weights]
    for index, w in enumerate(fractions):
        if w < 0:
            raise ValueError(f"Negative allocation weight at index {index}: {weights[index]}")

    currency = total.currency
    if total.cents == 0:
        return [Money.zero(currency) for _ in fractions]

    basis = sum(fractions, Fraction(0))
    if basis == 0:
        raise NoAllocationBasisError(amount=str(total))

    sign = -1 if total.cents < 0 else 1
    magnitude = abs(total.cents)

    shares: list[int] = []
    remainders: list[Fraction] = []
    for w in fractions:
        exact = magnitude * w / basis
        floor = exact.numerator // exact.denominator
        shares.append(floor)
        remainders.append(exact - floor)

    leftover = magnitude - sum(shares)
    order = sorted(
        range(len(fractions)),
        key=lambda i: (-remainders[i], -fractions[i], i),
    )
    for i in order[:leftover]:
        shares[i] += 1

    return [Money(cents=sign * share, currency=currency) for share in shares]
