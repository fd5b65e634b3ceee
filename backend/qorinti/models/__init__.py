from qorinti.models.account_ledger import AccountLedger
from qorinti.models.audit_log import AuditLog
from qorinti.models.driver import Driver
from qorinti.models.driver_transaction import DriverTransaction
from qorinti.models.payment_request import PaymentRequest
from qorinti.models.receipt import Receipt
from qorinti.models.receipt_sequence import ReceiptSequence
from qorinti.models.receipt_task import ReceiptTask
from qorinti.models.user import User

__all__ = [
    "AccountLedger",
    "AuditLog",
    "Driver",
    "DriverTransaction",
    "PaymentRequest",
    "Receipt",
    "ReceiptSequence",
    "ReceiptTask",
    "User",
]
