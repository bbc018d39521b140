"""Secret snapshots and bundle security audits."""
from __future__ import annotations

from easy_splunk.security.audit import (
    AUDIT_REPORT_FILENAME,
    AuditFinding,
    AuditReport,
    AuditSeverity,
    SecurityAuditor,
)
from easy_splunk.security.secrets import SecretsVault

__all__ = [
    "AUDIT_REPORT_FILENAME",
    "AuditFinding",
    "AuditReport",
    "AuditSeverity",
    "SecretsVault",
    "SecurityAuditor",
]
