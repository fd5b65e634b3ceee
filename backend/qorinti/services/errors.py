"""Domain exceptions raised by the ledger core.

They carry no HTTP semantics so scheduler jobs and scripts can use the
services directly; qorinti.main maps them to status codes.
"""


class LedgerError(Exception):
    """Base class for every ledger failure."""


class ValidationError(LedgerError):
    """Malformed input. Raised before any I/O."""


class InvalidStateError(LedgerError):
    """The entity is not in the state the operation requires."""


class PaymentRequestNotFoundError(InvalidStateError):
    """The payment request does not exist for this driver."""


class TransactionNotFoundError(InvalidStateError):
    """The transaction does not exist."""


class BusinessRuleError(LedgerError):
    """The state is valid but a business rule forbids the operation."""


class StorageError(LedgerError):
    """The durable store failed. Not retried here; the caller decides."""


class ReceiptEmissionError(LedgerError):
    """Receipt pipeline failure. Logged by the emitter, never propagated to approvals."""


class DriverNotFoundError(LedgerError):
    """No driver directory entry for this id."""


class ReceiptTaskNotFoundError(InvalidStateError):
    """The receipt follow-up task does not exist."""
