from tuition_billing.core.models.student import Student
from tuition_billing.core.models.class_model import SchoolClass
from tuition_billing.core.models.enrollment import Enrollment
from tuition_billing.core.models.payment_record import PaymentRecord
from tuition_billing.core.models.payment_entry import PaymentEntry
from tuition_billing.core.models.payment_generation_status import PaymentGenerationStatus
from tuition_billing.core.models.fee_cascade import FeeCascadeItem, FeeCascadeJob
from tuition_billing.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "Student",
    "SchoolClass",
    "Enrollment",
    "PaymentRecord",
    "PaymentEntry",
    "PaymentGenerationStatus",
    "FeeCascadeJob",
    "FeeCascadeItem",
    "FeeAuditLog",
]
