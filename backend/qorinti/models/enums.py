import enum

# Stored as VARCHAR columns, same as every other status column in the schema.


class UserRole(str, enum.Enum):
    DRIVER = "driver"
    CLIENT = "client"
    ADMIN = "admin"


class AccountStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    CLOSED = "CLOSED"


class TransactionSource(str, enum.Enum):
    TRIP = "TRIP"
    COMMISSION_PAYMENT = "COMMISSION_PAYMENT"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    SETTLED = "SETTLED"
    VOID = "VOID"


class PaymentRequestStatus(str, enum.Enum):
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DocumentType(str, enum.Enum):
    INVOICE = "INVOICE"  # factura, driver has a RUC
    RECEIPT = "RECEIPT"  # boleta


class ReceiptTaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"
