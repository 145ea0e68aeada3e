"""
Typed Exception Hierarchy for the Facility Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The write path rejects movements for several distinct reasons, and the UI
layer shows a different, actionable message for each of them.  Callers catch
by type and read structured attributes instead of parsing message strings:

    try:
        ledger.post_movement("CANET", movement_input, actor)
    except NegativeStockViolationError as e:
        show(f"Would leave {e.product} / {e.lot} / {e.warehouse} negative")
    except LotMismatchError as e:
        show(f"Lot {e.lot} does not belong to {e.product}")

Every exception has a CODE class attribute (machine-readable) and carries its
context as attributes.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- MovementError
    |   +-- MovementValidationError
    |   +-- LotMismatchError
    |   +-- NegativeStockViolationError
    |   +-- MovementNotFoundError
    |   +-- DerivedMovementReadOnlyError
    |
    +-- LotResolutionError
    |   +-- UnresolvedLotError
    |
    +-- AccessError
    |   +-- UnauthorizedEditError
    |   +-- UnauthorizedApproverError
    |   +-- DuplicateEditRequestError
    |   +-- EditRequestNotFoundError
    |   +-- EditRequestAlreadyResolvedError
    |
    +-- MasterDataError
    |   +-- DuplicateMasterRecordError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- NotificationDeliveryError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|-------------------------------------
Movement     | VALIDATION_ERROR             | Required field missing / qty <= 0
             | LOT_MISMATCH                 | (product, lot) not in lot master
             | NEGATIVE_STOCK               | Balance would drop below zero
             | MOVEMENT_NOT_FOUND           | Movement id not in facility store
             | DERIVED_MOVEMENT_READ_ONLY   | Mirror / auto-transfer-in touched
-------------|------------------------------|-------------------------------------
Lot          | UNRESOLVED_LOT               | Strict resolution failed
-------------|------------------------------|-------------------------------------
Access       | UNAUTHORIZED_EDIT            | No default rights, no active grant
             | UNAUTHORIZED_APPROVER        | Actor may not resolve requests
             | DUPLICATE_EDIT_REQUEST       | Requester already has a pending one
             | EDIT_REQUEST_NOT_FOUND       | Unknown request id
             | EDIT_REQUEST_ALREADY_RESOLVED| Request is approved or denied
-------------|------------------------------|-------------------------------------
Master data  | DUPLICATE_MASTER_RECORD      | Code already present
-------------|------------------------------|-------------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT     | Document version moved underneath
-------------|------------------------------|-------------------------------------
Notification | NOTIFICATION_DELIVERY_FAILED | Collaborator could not deliver

None of these are fatal.  The worst case of the core is a degraded-but-safe
state (an unresolved lot, a skipped mirror) surfaced for human follow-up.
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Movement-related exceptions


class MovementError(LedgerKernelError):
    """Base exception for movement write-path errors."""

    code: str = "MOVEMENT_ERROR"


class MovementValidationError(MovementError):
    """Required fields are missing or invalid."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, fields: list[str], reason: str = "missing or invalid"):
        self.fields = list(fields)
        self.reason = reason
        super().__init__(
            f"Movement rejected, {reason}: {', '.join(self.fields)}"
        )


class LotMismatchError(MovementError):
    """The (product, lot) pair is not part of the facility lot master."""

    code: str = "LOT_MISMATCH"

    def __init__(self, facility: str, product: str, lot: str):
        self.facility = facility
        self.product = product
        self.lot = lot
        super().__init__(
            f"Lot {lot} does not belong to product {product} in {facility}"
        )


class NegativeStockViolationError(MovementError):
    """The movement would drive a (product, lot, warehouse) balance negative."""

    code: str = "NEGATIVE_STOCK"

    def __init__(
        self,
        product: str,
        lot: str,
        warehouse: str,
        current_balance: Decimal,
        attempted_change: Decimal,
    ):
        self.product = product
        self.lot = lot
        self.warehouse = warehouse
        self.current_balance = current_balance
        self.attempted_change = attempted_change
        super().__init__(
            f"Invalid movement: stock of {product} / {lot} / {warehouse} "
            f"would go negative ({current_balance} {attempted_change:+})"
        )


class MovementNotFoundError(MovementError):
    """Movement id is not present in the facility store."""

    code: str = "MOVEMENT_NOT_FOUND"

    def __init__(self, facility: str, movement_id: int):
        self.facility = facility
        self.movement_id = movement_id
        super().__init__(f"Movement {movement_id} not found in {facility}")


class DerivedMovementReadOnlyError(MovementError):
    """Mirror and auto-transfer-in rows belong to the synchronizer."""

    code: str = "DERIVED_MOVEMENT_READ_ONLY"

    def __init__(self, facility: str, movement_id: int, source: str):
        self.facility = facility
        self.movement_id = movement_id
        self.source = source
        super().__init__(
            f"Movement {movement_id} in {facility} is a derived '{source}' row "
            "and can only change through its origin movement"
        )


# Lot resolution


class LotResolutionError(LedgerKernelError):
    """Base exception for lot resolution errors."""

    code: str = "LOT_RESOLUTION_ERROR"


class UnresolvedLotError(LotResolutionError):
    """A lot token could not be canonicalized uniquely."""

    code: str = "UNRESOLVED_LOT"

    def __init__(self, product: str, token: str, candidates: tuple[str, ...] = ()):
        self.product = product
        self.token = token
        self.candidates = tuple(candidates)
        detail = f" (candidates: {', '.join(self.candidates)})" if self.candidates else ""
        super().__init__(
            f"Lot token '{token}' for product {product} could not be resolved{detail}"
        )


# Access-related exceptions


class AccessError(LedgerKernelError):
    """Base exception for edit-access workflow errors."""

    code: str = "ACCESS_ERROR"


class UnauthorizedEditError(AccessError):
    """Actor has neither default edit rights nor an active grant."""

    code: str = "UNAUTHORIZED_EDIT"

    def __init__(self, facility: str, user_id: str):
        self.facility = facility
        self.user_id = user_id
        super().__init__(
            f"User {user_id} has no edit access to the {facility} ledger"
        )


class UnauthorizedApproverError(AccessError):
    """Actor is not allowed to resolve edit requests."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, facility: str, user_id: str):
        self.facility = facility
        self.user_id = user_id
        super().__init__(
            f"User {user_id} cannot resolve edit requests for {facility}"
        )


class DuplicateEditRequestError(AccessError):
    """Requester already has a pending request."""

    code: str = "DUPLICATE_EDIT_REQUEST"

    def __init__(self, facility: str, requester_id: str, request_id: str):
        self.facility = facility
        self.requester_id = requester_id
        self.request_id = request_id
        super().__init__(
            f"User {requester_id} already has pending request {request_id} "
            f"for {facility}"
        )


class EditRequestNotFoundError(AccessError):
    """Edit request id not found."""

    code: str = "EDIT_REQUEST_NOT_FOUND"

    def __init__(self, facility: str, request_id: str):
        self.facility = facility
        self.request_id = request_id
        super().__init__(f"Edit request {request_id} not found for {facility}")


class EditRequestAlreadyResolvedError(AccessError):
    """Edit request is no longer pending."""

    code: str = "EDIT_REQUEST_ALREADY_RESOLVED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Edit request {request_id} is already {status}")


# Master data


class MasterDataError(LedgerKernelError):
    """Base exception for master data maintenance errors."""

    code: str = "MASTER_DATA_ERROR"


class DuplicateMasterRecordError(MasterDataError):
    """Master record with the same identity already exists."""

    code: str = "DUPLICATE_MASTER_RECORD"

    def __init__(self, table: str, identity: str):
        self.table = table
        self.identity = identity
        super().__init__(f"{table} already contains {identity}")


# Concurrency


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Document version changed since it was read."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, key: str, expected_version: int, actual_version: int):
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock conflict on document {key}: expected version "
            f"{expected_version}, found {actual_version}"
        )


# Collaborators


class NotificationDeliveryError(LedgerKernelError):
    """Notification collaborator failed to deliver a message."""

    code: str = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(self, user_id: str, reason: str):
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Could not notify {user_id}: {reason}")
