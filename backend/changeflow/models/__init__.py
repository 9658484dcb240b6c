from changeflow.models.audit_log import AuditLog
from changeflow.models.change_conflict import ChangeConflict, ConflictResolution, ConflictType
from changeflow.models.change_set import ChangeLevel, ChangeSet, ChangeSetStatus
from changeflow.models.product import Product
from changeflow.models.tenant import Tenant
from changeflow.models.user_activity_log import UserActivityLog
from changeflow.models.version_history import VersionHistory

__all__ = [
    "AuditLog",
    "ChangeConflict",
    "ConflictResolution",
    "ConflictType",
    "ChangeLevel",
    "ChangeSet",
    "ChangeSetStatus",
    "Product",
    "Tenant",
    "UserActivityLog",
    "VersionHistory",
]
