"""Domain Enumerations.

Controlled vocabularies shared by validation rules, test results and
critical-value notifications. Values match the strings stored by the LIS
front end so documents round-trip without translation.
"""

from enum import Enum


class RuleType(str, Enum):
    """Validation rule families."""
    RANGE = "range"
    CRITICAL = "critical"
    ABSURD = "absurd"
    DELTA = "delta"
    PATTERN = "pattern"
    CONSISTENCY = "consistency"
    CALCULATED = "calculated"


class RuleAction(str, Enum):
    """What a rule does when it fires."""
    WARN = "warn"
    BLOCK = "block"
    NOTIFY = "notify"
    FLAG = "flag"


class DeltaType(str, Enum):
    """How a delta check measures change from the previous result."""
    ABSOLUTE = "absolute"
    PERCENTAGE = "percentage"


class ResultType(str, Enum):
    """Result-type hint supplied with a raw value."""
    NUMERIC = "numeric"
    TEXT = "text"


class ResultStatus(str, Enum):
    """Lifecycle state of a test result.

    pending -> (validated | rejected | requires_review); validated results
    may later become amended. FINAL marks released historical results that
    delta checks compare against.
    """
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"
    REQUIRES_REVIEW = "requires_review"
    AMENDED = "amended"
    FINAL = "final"


class ResultFlag(str, Enum):
    """Abnormality flags produced by the engine."""
    NORMAL = "normal"
    LOW = "low"
    HIGH = "high"
    CRITICAL_LOW = "critical_low"
    CRITICAL_HIGH = "critical_high"


class NotificationStatus(str, Enum):
    """Critical-result notification lifecycle (acknowledged is terminal)."""
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"


class AuditAction(str, Enum):
    """Audit trail event types written by the validation workflow."""
    VALIDATION = "validation"
    VALIDATION_SYSTEM_ERROR = "validation_system_error"
    CRITICAL_NOTIFICATION = "critical_notification"
    NOTIFICATION_ACKNOWLEDGED = "notification_acknowledged"


class WestgardRule(str, Enum):
    """Westgard multi-rule QC codes."""
    R_12S = "12s"   # 1 control exceeds 2SD
    R_13S = "13s"   # 1 control exceeds 3SD
    R_22S = "22s"   # 2 consecutive controls exceed 2SD on same side
    R_R4S = "R4s"   # range of 2 consecutive controls exceeds 4SD
    R_41S = "41s"   # 4 consecutive controls exceed 1SD on same side
    R_10X = "10x"   # 10 consecutive controls on same side of mean


class QCSeverity(str, Enum):
    """Severity of a Westgard violation."""
    WARNING = "warning"
    REJECTION = "rejection"


class QCRunStatus(str, Enum):
    """Disposition of a QC run after Westgard evaluation."""
    ACCEPTED = "accepted"
    WARNING = "warning"
    REJECTED = "rejected"
