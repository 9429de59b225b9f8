from enum import Enum


class PaymentMethod(str, Enum):
    CASH = "CASH"
    INVOICE = "INVOICE"


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    WITHDRAWN = "WITHDRAWN"
    COMPLETED = "COMPLETED"
    PENDING = "PENDING"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    # Derived from due_date on read; never persisted by a write path.
    OVERDUE = "OVERDUE"
    WAIVED = "WAIVED"


class PaymentEntryKind(str, Enum):
    INCREMENT = "INCREMENT"
    SETTLEMENT = "SETTLEMENT"
    REVERSAL = "REVERSAL"


class ProrationMode(str, Enum):
    FOUR_WEEK = "four_week"
    CALENDAR_WEEKS = "calendar_weeks"


class CascadeJobStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"


class CascadeItemStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"
