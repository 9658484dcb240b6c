from changeflow.repositories.audit_log_repository import AuditLogRepository
from changeflow.repositories.change_conflict_repository import ChangeConflictRepository
from changeflow.repositories.change_set_repository import ChangeSetRepository
from changeflow.repositories.user_activity_repository import UserActivityRepository
from changeflow.repositories.version_history_repository import VersionHistoryRepository

__all__ = [
    "AuditLogRepository",
    "ChangeConflictRepository",
    "ChangeSetRepository",
    "UserActivityRepository",
    "VersionHistoryRepository",
]
