from changeflow.schemas.audit_log import (
    ActivityStats,
    AuditCleanupRequest,
    AuditCleanupResponse,
    AuditLogCreate,
    AuditLogPage,
    AuditLogResponse,
    AuditLogSummary,
    DailyActivityCount,
    UserActivityCreate,
    UserActivityPage,
    UserActivityResponse,
)
from changeflow.schemas.change_set import (
    ApproveChangeRequest,
    ChangeConflictResponse,
    ChangeHistoryEntry,
    ChangeHistoryResponse,
    ChangeSetCreate,
    ChangeSetResponse,
    ProcessChangeRequest,
    ProcessChangeResponse,
    RejectChangeRequest,
    ResolveConflictRequest,
    VersionHistoryResponse,
)

__all__ = [
    "ActivityStats",
    "ApproveChangeRequest",
    "AuditCleanupRequest",
    "AuditCleanupResponse",
    "AuditLogCreate",
    "AuditLogPage",
    "AuditLogResponse",
    "AuditLogSummary",
    "DailyActivityCount",
    "ChangeConflictResponse",
    "ChangeHistoryEntry",
    "ChangeHistoryResponse",
    "ChangeSetCreate",
    "ChangeSetResponse",
    "ProcessChangeRequest",
    "ProcessChangeResponse",
    "RejectChangeRequest",
    "ResolveConflictRequest",
    "UserActivityCreate",
    "UserActivityPage",
    "UserActivityResponse",
    "VersionHistoryResponse",
]
