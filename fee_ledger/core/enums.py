from enum import Enum


class FeeStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"


class PaymentType(str, Enum):
    CLASS = "class"
    BUS = "bus"
    BOTH = "both"
    OTHER = "other"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHEQUE = "cheque"
    ONLINE = "online"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"


class PaymentRecordStatus(str, Enum):
    COMPLETED = "completed"


class PaymentRequestType(str, Enum):
    CLASS = "class"
    BUS = "bus"


class PaymentRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DecisionAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class AuditAction(str, Enum):
    LEDGER_CREATED = "LEDGER_CREATED"
    TOTALS_UPDATED = "TOTALS_UPDATED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PAYMENT_REQUEST_APPROVED = "PAYMENT_REQUEST_APPROVED"
    PAYMENT_REQUEST_REJECTED = "PAYMENT_REQUEST_REJECTED"


class AuditSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
