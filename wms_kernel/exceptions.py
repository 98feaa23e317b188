"""
Typed Exception Hierarchy for the purchasing/shipment kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Lifecycle and allocation failures are rendered by callers (usually a UI
layer) and must never be parsed out of message strings. Every error here:
  1. Has its own exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as instance attributes

Example:
    try:
        lifecycle.apply_transition(po, "close")
    except InvalidTransitionError as e:
        api_response(
            code=e.code,
            from_state=e.from_state,
            attempted=e.attempted,
            reason=e.reason,
        )

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WmsKernelError (base)
    |
    +-- LifecycleError
    |   +-- InvalidTransitionError
    |   +-- ChargeNotApplicableError
    |   +-- NotReadyToFinalizeError
    |
    +-- AllocationError
    |   +-- NoAllocationBasisError
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- EntityNotFoundError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|------------------------------------------
Lifecycle    | INVALID_TRANSITION       | Illegal state/action pair or failed guard
             | CHARGE_NOT_APPLICABLE    | Incoterm forbids a tax/shipping charge
             | NOT_READY_TO_FINALIZE    | Allocation missing or stale
-------------|--------------------------|------------------------------------------
Allocation   | NO_BASIS                 | All weights zero for a non-zero cost
-------------|--------------------------|------------------------------------------
Currency     | INVALID_CURRENCY         | Not a known ISO 4217 code
             | CURRENCY_MISMATCH        | Mixed currencies in one operation
-------------|--------------------------|------------------------------------------
Concurrency  | CONCURRENT_MODIFICATION  | Snapshot version differs from the store
-------------|--------------------------|------------------------------------------
Persistence  | ENTITY_NOT_FOUND         | Snapshot id unknown to the store
Config       | CONFIGURATION_ERROR      | Settings file is malformed

Nothing in this hierarchy is auto-retried. ConcurrentModificationError
tells the caller to re-fetch and retry; every other error is deterministic
for the same input.
"""


class WmsKernelError(Exception):
    """
    Base exception for all kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "WMS_KERNEL_ERROR"


# Lifecycle-related exceptions


class LifecycleError(WmsKernelError):
    """Base exception for lifecycle errors."""

    code: str = "LIFECYCLE_ERROR"


class InvalidTransitionError(LifecycleError):
    """
    Requested action is not legal from the current state, or its guard failed.

    Always surfaced to the caller verbatim.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(self, from_state: str, attempted: str, reason: str):
        self.from_state = from_state
        self.attempted = attempted
        self.reason = reason
        super().__init__(
            f"Invalid transition '{attempted}' from '{from_state}': {reason}"
        )


class ChargeNotApplicableError(LifecycleError):
    """The PO's Incoterm does not allow the charge being edited."""

    code: str = "CHARGE_NOT_APPLICABLE"

    def __init__(self, incoterm: str | None, charge: str):
        self.incoterm = incoterm
        self.charge = charge
        super().__init__(
            f"Charge '{charge}' is not applicable under Incoterm {incoterm}"
        )


class NotReadyToFinalizeError(LifecycleError):
    """Shipment allocation is missing or older than the last cost change."""

    code: str = "NOT_READY_TO_FINALIZE"

    def __init__(self, shipment_id: str, reason: str):
        self.shipment_id = shipment_id
        self.reason = reason
        super().__init__(
            f"Shipment {shipment_id} is not ready to finalize: {reason}"
        )


# Allocation-related exceptions


class AllocationError(WmsKernelError):
    """Base exception for cost allocation errors."""

    code: str = "ALLOCATION_ERROR"


class NoAllocationBasisError(AllocationError):
    """
    A non-zero amount cannot be split because every weight is zero.

    The cost is left unallocated rather than silently zeroed.
    """

    code: str = "NO_BASIS"

    def __init__(
        self,
        amount: str,
        method: str | None = None,
        cost_id: str | None = None,
    ):
        self.amount = amount
        self.method = method
        self.cost_id = cost_id
        target = f"cost {cost_id}" if cost_id else "amount"
        via = f" using {method}" if method else ""
        super().__init__(
            f"No allocation basis for {target} ({amount}){via}: "
            "all weights are zero"
        )


# Currency-related exceptions


class CurrencyError(WmsKernelError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Currency code is not a known ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: {currency}")


class CurrencyMismatchError(CurrencyError):
    """Attempted operation on mismatched currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str):
        self.currency1 = currency1
        self.currency2 = currency2
        super().__init__(f"Currency mismatch: {currency1} vs {currency2}")


# Concurrency-related exceptions


class ConcurrencyError(WmsKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """The entity changed after the caller read its snapshot."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Persistence / configuration


class EntityNotFoundError(WmsKernelError):
    """No stored snapshot exists for the requested id."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class ConfigurationError(WmsKernelError):
    """Settings could not be loaded or validated."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, problem: str):
        self.source = source
        self.problem = problem
        super().__init__(f"Invalid configuration in {source}: {problem}")
