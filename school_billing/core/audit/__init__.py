from school_billing.core.audit.models import AuditLog
from school_billing.core.audit.service import AuditAction, AuditService

__all__ = ["AuditLog", "AuditAction", "AuditService"]
