"""Audit infrastructure components.

This package provides the append-only audit trail of validation decisions.
"""

from src.infrastructure.audit.validation_audit_logger import ValidationAuditLogger

__all__ = ['ValidationAuditLogger']
