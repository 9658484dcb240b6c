"""Changeset pipeline: propose, check, apply, version, approve, reject and roll back.

A change is recorded as a ``ChangeSet`` before anything is written. Applying
it reads the current entity state, runs conflict detection and field
validation, then writes the entity update, the changeset snapshots, an
audit entry and a new version row in one database transaction. Cache
invalidation and the live broadcast happen after commit and are best-effort.

Status flow::

    pending -> processing -> applied -> rolled_back
    pending -> approved -> processing -> applied
    pending/approved/conflicted -> rejected
    pending/approved -> conflicted -> (resolved) -> processing -> applied

Rollback never rewrites history: it applies the previous snapshot as a new
changeset and only marks the original ``rolled_back``.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from changeflow.core.cache import (
    RedisCache,
    entity_key,
    get_cache,
    global_list_pattern,
    tenant_list_pattern,
)
from changeflow.core.database import transaction
from changeflow.core.entity_registry import EntityRegistry
from changeflow.core.events import (
    CHANGE_APPROVED,
    CHANGE_COMMITTED,
    CHANGE_CONFLICTED,
    CHANGE_CREATED,
    CHANGE_REJECTED,
    CHANGE_ROLLED_BACK,
    CONFLICT_RESOLVED,
    ENTITY_UPDATED,
    EventBroadcaster,
    get_broadcaster,
)
from changeflow.entities import get_entity_registry
from changeflow.models.change_conflict import ChangeConflict, ConflictResolution
from changeflow.models.change_set import ChangeLevel, ChangeSet, ChangeSetStatus
from changeflow.models.shared import ensure_utc
from changeflow.models.version_history import VersionHistory
from changeflow.repositories.change_conflict_repository import ChangeConflictRepository
from changeflow.repositories.change_set_repository import ChangeSetRepository
from changeflow.repositories.version_history_repository import VersionHistoryRepository
from changeflow.services.audit_service import AuditService
from changeflow.services.conflict_detector import VERSION_FIELD, ConflictDetector
from changeflow.services.diff import compute_diff, declared_diff
from changeflow.services.errors import ChangeConflictError, ChangeValidationError

logger = logging.getLogger(__name__)

PROCESSABLE_STATUSES = frozenset(
    {
        ChangeSetStatus.PENDING.value,
        ChangeSetStatus.APPROVED.value,
        ChangeSetStatus.CONFLICTED.value,
    }
)
REJECTABLE_STATUSES = PROCESSABLE_STATUSES
HISTORY_DIFF_IGNORE = frozenset({"updated_at"})


@dataclass
class ProcessResult:
    success: bool
    data: dict[str, Any]
    version: VersionHistory
    change_set: ChangeSet | None = None


def change_set_snapshot(change_set: ChangeSet) -> dict[str, Any]:
    """Plain copy of a changeset, stored in the metadata of its rollback."""
    return {
        "id": str(change_set.id),
        "entity_type": change_set.entity_type,
        "entity_id": change_set.entity_id,
        "changes": change_set.changes,
        "old_values": change_set.old_values,
        "new_values": change_set.new_values,
        "user_id": change_set.user_id,
        "status": change_set.status,
        "applied_at": (
            ensure_utc(change_set.applied_at).isoformat() if change_set.applied_at else None
        ),
    }


class ChangeService:
    """Orchestrates the changeset lifecycle for every registered entity type."""

    def __init__(
        self,
        db: Session,
        registry: EntityRegistry | None = None,
        cache: RedisCache | None = None,
        broadcaster: EventBroadcaster | None = None,
        detector: ConflictDetector | None = None,
    ):
        self.db = db
        self.registry = registry or get_entity_registry()
        self.cache = cache if cache is not None else get_cache()
        self.broadcaster = broadcaster or get_broadcaster()
        self.detector = detector or ConflictDetector(db)
        self.audit = AuditService(db, self.cache)
        self.change_set_repo = ChangeSetRepository(db)
        self.conflict_repo = ChangeConflictRepository(db)
        self.version_repo = VersionHistoryRepository(db)

    # ------------------------------------------------------------------
    # Proposal
    # ------------------------------------------------------------------

    def create_change_set(
        self,
        *,
        entity_type: str,
        entity_id: str,
        changes: dict[str, Any],
        user_id: str,
        tenant_id: UUID,
        level: ChangeLevel | str = ChangeLevel.OPTIMISTIC,
        metadata: dict[str, Any] | None = None,
    ) -> ChangeSet:
        """Record a pending proposal. Nothing is checked or applied here."""
        self.registry.get(entity_type)
        change_set = self.change_set_repo.create(
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            changes=changes,
            user_id=user_id,
            level=ChangeLevel(level).value,
            metadata=metadata,
        )
        self._broadcast(CHANGE_CREATED, change_set)
        return change_set

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def process_change(
        self,
        *,
        entity_type: str,
        entity_id: str,
        changes: dict[str, Any],
        user_id: str,
        tenant_id: UUID,
        change_set_id: UUID | None = None,
        force: bool = False,
    ) -> ProcessResult:
        """Materialize ``changes`` on the entity.

        Raises ChangeConflictError when a changeset is given and conflicts are
        detected (they are persisted and the changeset becomes ``conflicted``),
        and ChangeValidationError when the delta breaks a field rule. ``force``
        skips conflict detection and is used once conflicts were resolved.
        """
        entry = self.registry.get(entity_type)

        change_set = None
        if change_set_id is not None:
            change_set = self._require_change_set(change_set_id, tenant_id)
            if change_set.entity_type != entity_type or change_set.entity_id != entity_id:
                raise ValueError(
                    f"ChangeSet {change_set_id} does not belong to {entity_type} {entity_id}"
                )
            if change_set.status not in PROCESSABLE_STATUSES:
                raise ValueError(f"Cannot process a {change_set.status} change")

        current = entry.repository.get(self.db, entity_id, tenant_id)
        if current is None:
            raise ValueError(f"{entity_type} {entity_id} not found")

        if not force:
            conflicts = self.detector.detect(
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
                current=current,
                incoming=changes,
                change_set_id=change_set_id,
            )
            if conflicts and change_set is not None:
                recorded = self._record_conflicts(change_set, conflicts)
                raise ChangeConflictError(recorded, current, changes)
            if conflicts:
                logger.warning(
                    "Applying %s %s without a changeset despite %d conflict(s)",
                    entity_type,
                    entity_id,
                    len(conflicts),
                )

        delta = {key: value for key, value in changes.items() if key != VERSION_FIELD}
        errors = self.registry.validate_changes(entity_type, delta)
        if not delta:
            errors.append({"field": "changes", "message": "No changes to apply"})
        if errors:
            raise ChangeValidationError(errors)

        previous_status = previous_level = None
        if change_set is not None:
            previous_status, previous_level = change_set.status, change_set.level
            self.change_set_repo.update(
                change_set,
                status=ChangeSetStatus.PROCESSING.value,
                level=ChangeLevel.PROCESSING.value,
            )

        try:
            with transaction(self.db):
                applied = entry.repository.update(
                    self.db, entity_id, tenant_id, delta, commit=False
                )
                new_values = {**current, **delta, "updated_at": applied["updated_at"]}
                if change_set is not None:
                    self.change_set_repo.update(
                        change_set, old_values=current, new_values=new_values, commit=False
                    )
                audit_log = self.audit.create_audit_log(
                    tenant_id=tenant_id,
                    action="change_applied",
                    entity_type=entity_type,
                    entity_id=entity_id,
                    user_id=user_id,
                    changes=compute_diff(current, new_values),
                    context={
                        "change_set_id": str(change_set_id) if change_set_id else None,
                        "forced": force,
                    },
                    in_transaction=True,
                )
                version = self.version_repo.create(
                    tenant_id=tenant_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    version_number=self.version_repo.count_for_entity(entity_type, entity_id) + 1,
                    data=new_values,
                    change_set_id=change_set_id,
                    created_by=user_id,
                    commit=False,
                )
        except Exception:
            if change_set is not None:
                self.change_set_repo.update(
                    change_set, status=previous_status, level=previous_level
                )
            raise

        if audit_log is not None:
            self.audit.mirror_recent(audit_log)
        self._invalidate_entity(entity_type, entity_id, tenant_id)
        self.broadcaster.broadcast(
            ENTITY_UPDATED,
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "tenant_id": str(tenant_id),
                "change_set_id": str(change_set_id) if change_set_id else None,
                "version_number": version.version_number,
                "data": new_values,
            },
        )
        return ProcessResult(success=True, data=new_values, version=version, change_set=change_set)

    def commit_change(self, change_set_id: UUID, tenant_id: UUID | None = None) -> ChangeSet:
        """Finalize a processed changeset as committed and applied."""
        change_set = self._require_change_set(change_set_id, tenant_id)
        if change_set.status != ChangeSetStatus.PROCESSING.value:
            raise ValueError("Only processed changes can be committed")
        self.change_set_repo.update(
            change_set,
            level=ChangeLevel.COMMITTED.value,
            status=ChangeSetStatus.APPLIED.value,
            applied_at=datetime.now(UTC),
        )
        self._broadcast(CHANGE_COMMITTED, change_set)
        return change_set

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def approve_change(
        self,
        *,
        change_set_id: UUID,
        approved_by: str,
        apply_immediately: bool = False,
        tenant_id: UUID | None = None,
    ) -> ChangeSet:
        change_set = self._require_change_set(change_set_id, tenant_id)
        if change_set.status != ChangeSetStatus.PENDING.value:
            raise ValueError(f"Cannot approve a {change_set.status} change")

        self.change_set_repo.update(
            change_set,
            status=ChangeSetStatus.APPROVED.value,
            approved_by=approved_by,
            approved_at=datetime.now(UTC),
        )
        self.audit.create_audit_log(
            tenant_id=change_set.tenant_id,  # type: ignore[arg-type]
            action="change_approved",
            entity_type=str(change_set.entity_type),
            entity_id=str(change_set.entity_id),
            user_id=approved_by,
            context={"change_set_id": str(change_set.id)},
        )
        self._broadcast(CHANGE_APPROVED, change_set)

        if apply_immediately:
            self._apply_and_commit(change_set, dict(change_set.changes), str(change_set.user_id))
        return change_set

    def reject_change(
        self,
        *,
        change_set_id: UUID,
        rejected_by: str,
        reason: str | None = None,
        tenant_id: UUID | None = None,
    ) -> ChangeSet:
        """Reject a changeset. Rejected changesets can never be applied afterwards."""
        change_set = self._require_change_set(change_set_id, tenant_id)
        if change_set.status not in REJECTABLE_STATUSES:
            raise ValueError(f"Cannot reject a {change_set.status} change")

        self.change_set_repo.update(
            change_set,
            status=ChangeSetStatus.REJECTED.value,
            rejected_by=rejected_by,
            rejected_at=datetime.now(UTC),
            rejection_reason=reason,
        )
        self.audit.create_audit_log(
            tenant_id=change_set.tenant_id,  # type: ignore[arg-type]
            action="change_rejected",
            entity_type=str(change_set.entity_type),
            entity_id=str(change_set.entity_id),
            user_id=rejected_by,
            context={"change_set_id": str(change_set.id), "reason": reason},
        )
        self._broadcast(CHANGE_REJECTED, change_set, reason=reason)
        return change_set

    # ------------------------------------------------------------------
    # History and rollback
    # ------------------------------------------------------------------

    def get_change_history(
        self,
        *,
        entity_type: str,
        entity_id: str,
        tenant_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
        include_rollbacks: bool = False,
    ) -> dict[str, Any]:
        """Applied changesets for an entity, newest first, each with a display diff.

        The diff compares an entry with the changeset applied just before it;
        the oldest entry falls back to its own declared delta.
        """
        statuses = [ChangeSetStatus.APPLIED.value]
        if include_rollbacks:
            statuses.append(ChangeSetStatus.ROLLED_BACK.value)

        # One extra row so the last entry of the page still has a predecessor.
        rows = self.change_set_repo.get_history(
            entity_type, entity_id, statuses, tenant_id, skip=offset, limit=limit + 1
        )
        page = rows[:limit]
        versions = self.version_repo.get_by_change_set_ids([cs.id for cs in page])

        entries = []
        for index, change_set in enumerate(page):
            previous = rows[index + 1] if index + 1 < len(rows) else None
            if previous is not None and previous.new_values is not None:
                diff = compute_diff(
                    previous.new_values, change_set.new_values, ignore=HISTORY_DIFF_IGNORE
                )
            else:
                diff = declared_diff(change_set.changes or {}, change_set.old_values)
            entries.append(
                {
                    "change": change_set,
                    "diff": diff,
                    "version": versions.get(change_set.id),  # type: ignore[call-overload]
                }
            )

        return {
            "changes": entries,
            "total": self.change_set_repo.count_history(
                entity_type, entity_id, statuses, tenant_id
            ),
        }

    def rollback_change(
        self,
        *,
        change_set_id: UUID,
        user_id: str,
        tenant_id: UUID | None = None,
    ) -> ChangeSet:
        """Restore the state before an applied changeset through a new changeset."""
        target = self._require_change_set(change_set_id, tenant_id)
        if target.status != ChangeSetStatus.APPLIED.value:
            raise ValueError("Can only rollback applied changes")
        if not target.old_values:
            raise ValueError(f"ChangeSet {change_set_id} has no snapshot to restore")

        entity_type = str(target.entity_type)
        rollback = self.create_change_set(
            entity_type=entity_type,
            entity_id=str(target.entity_id),
            changes=self.registry.writable(entity_type, dict(target.old_values)),
            user_id=user_id,
            tenant_id=target.tenant_id,  # type: ignore[arg-type]
            metadata={
                "rollback_of": str(target.id),
                "original_change_set": change_set_snapshot(target),
            },
        )
        self._apply_and_commit(rollback, dict(rollback.changes), user_id)

        self.change_set_repo.update(target, status=ChangeSetStatus.ROLLED_BACK.value)
        self._broadcast(CHANGE_ROLLED_BACK, target, rollback_change_set_id=str(rollback.id))
        return rollback

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def resolve_conflict(
        self,
        *,
        conflict_id: UUID,
        resolution: ConflictResolution | str,
        resolved_by: str,
        merged_changes: dict[str, Any] | None = None,
        tenant_id: UUID | None = None,
    ) -> ChangeSet:
        """Settle a conflict and drive its changeset to rejected or applied.

        ``accept_current`` keeps the stored state and rejects the changeset,
        ``accept_incoming`` forces the original delta through, and ``merge``
        applies ``merged_changes`` on behalf of the resolver.
        """
        resolution = ConflictResolution(resolution)
        conflict = self.conflict_repo.get_by_id(conflict_id, tenant_id)
        if conflict is None:
            raise ValueError(f"Conflict {conflict_id} not found")
        if conflict.resolution is not None:
            raise ValueError("Conflict is already resolved")
        if resolution == ConflictResolution.MERGE and not merged_changes:
            raise ValueError("merged_changes is required to merge a conflict")

        change_set = self._require_change_set(conflict.change_set_id, tenant_id)  # type: ignore[arg-type]
        if change_set.status != ChangeSetStatus.CONFLICTED.value:
            raise ValueError(f"Cannot resolve a conflict on a {change_set.status} change")

        for pending in self.conflict_repo.get_unresolved(change_set.id):  # type: ignore[arg-type]
            self.conflict_repo.resolve(pending, resolution.value, resolved_by)
        self.broadcaster.broadcast(
            CONFLICT_RESOLVED,
            {
                "conflict_id": str(conflict.id),
                "change_set_id": str(change_set.id),
                "resolution": resolution.value,
                "resolved_by": resolved_by,
            },
        )

        if resolution == ConflictResolution.ACCEPT_CURRENT:
            return self.reject_change(
                change_set_id=change_set.id,  # type: ignore[arg-type]
                rejected_by=resolved_by,
                reason="Conflict resolved in favour of the current state",
            )

        if resolution == ConflictResolution.ACCEPT_INCOMING:
            self._apply_and_commit(
                change_set, dict(change_set.changes), str(change_set.user_id), force=True
            )
            return change_set

        self.change_set_repo.update(
            change_set,
            metadata_={
                **(change_set.metadata_ or {}),
                "merged_changes": merged_changes,
                "merged_by": resolved_by,
            },
        )
        self._apply_and_commit(change_set, dict(merged_changes or {}), resolved_by, force=True)
        return change_set

    def get_conflicts(self, change_set_id: UUID) -> list[ChangeConflict]:
        return self.conflict_repo.get_by_change_set(change_set_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_change_set(self, change_set_id: UUID, tenant_id: UUID | None = None) -> ChangeSet | None:
        return self.change_set_repo.get_by_id(change_set_id, tenant_id)

    def list_change_sets(
        self,
        tenant_id: UUID,
        *,
        status: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        return {
            "items": self.change_set_repo.get_all(
                tenant_id,
                skip=offset,
                limit=limit,
                status=status,
                entity_type=entity_type,
                entity_id=entity_id,
            ),
            "total": self.change_set_repo.count(
                tenant_id, status=status, entity_type=entity_type, entity_id=entity_id
            ),
            "limit": limit,
            "offset": offset,
        }

    def get_version_history(
        self,
        entity_type: str,
        entity_id: str,
        tenant_id: UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[VersionHistory]:
        return self.version_repo.get_for_entity(
            entity_type, entity_id, tenant_id, skip=offset, limit=limit
        )

    def get_version(
        self,
        entity_type: str,
        entity_id: str,
        version_number: int,
        tenant_id: UUID | None = None,
    ) -> VersionHistory | None:
        return self.version_repo.get_version(entity_type, entity_id, version_number, tenant_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_change_set(self, change_set_id: UUID, tenant_id: UUID | None) -> ChangeSet:
        change_set = self.change_set_repo.get_by_id(change_set_id, tenant_id)
        if change_set is None:
            raise ValueError(f"ChangeSet {change_set_id} not found")
        return change_set

    def _apply_and_commit(
        self,
        change_set: ChangeSet,
        changes: dict[str, Any],
        user_id: str,
        force: bool = False,
    ) -> ProcessResult:
        result = self.process_change(
            entity_type=str(change_set.entity_type),
            entity_id=str(change_set.entity_id),
            changes=changes,
            user_id=user_id,
            tenant_id=change_set.tenant_id,  # type: ignore[arg-type]
            change_set_id=change_set.id,  # type: ignore[arg-type]
            force=force,
        )
        self.commit_change(change_set.id)  # type: ignore[arg-type]
        return result

    def _record_conflicts(
        self, change_set: ChangeSet, conflicts: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        recorded = []
        with transaction(self.db):
            for conflict in conflicts:
                row = self.conflict_repo.create(
                    tenant_id=change_set.tenant_id,  # type: ignore[arg-type]
                    change_set_id=change_set.id,  # type: ignore[arg-type]
                    conflict_type=conflict["type"],
                    conflict_data=conflict["data"],
                    commit=False,
                )
                recorded.append({"id": str(row.id), **conflict})
            self.change_set_repo.add_conflict_ids(
                change_set, [UUID(item["id"]) for item in recorded], commit=False
            )
            self.change_set_repo.update(
                change_set, status=ChangeSetStatus.CONFLICTED.value, commit=False
            )
        self._broadcast(CHANGE_CONFLICTED, change_set, conflicts=recorded)
        return recorded

    def _invalidate_entity(self, entity_type: str, entity_id: str, tenant_id: UUID) -> None:
        self.cache.delete(entity_key(entity_type, entity_id))
        self.cache.delete_pattern(tenant_list_pattern(tenant_id, entity_type))
        self.cache.delete_pattern(global_list_pattern(entity_type))

    def _broadcast(self, event_type: str, change_set: ChangeSet, **extra: Any) -> None:
        self.broadcaster.broadcast(
            event_type,
            {
                "change_set_id": str(change_set.id),
                "entity_type": change_set.entity_type,
                "entity_id": change_set.entity_id,
                "tenant_id": str(change_set.tenant_id),
                "user_id": change_set.user_id,
                "status": change_set.status,
                **extra,
            },
        )
