"""Tests for ChangeService: apply, commit, approve, reject, rollback, resolve and history."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from changeflow.core.cache import RedisCache
from changeflow.core.events import (
    CHANGE_APPROVED,
    CHANGE_CONFLICTED,
    CHANGE_CREATED,
    CHANGE_REJECTED,
    CHANGE_ROLLED_BACK,
    CONFLICT_RESOLVED,
    ENTITY_UPDATED,
)
from changeflow.models import (
    AuditLog,
    ChangeConflict,
    ChangeSet,
    ChangeSetStatus,
    Product,
    VersionHistory,
)
from changeflow.models.shared import DEFAULT_TENANT_ID
from changeflow.repositories.audit_log_repository import AuditLogRepository
from changeflow.repositories.change_set_repository import ChangeSetRepository
from changeflow.repositories.version_history_repository import VersionHistoryRepository
from changeflow.services.change_service import ChangeService, change_set_snapshot
from changeflow.services.errors import ChangeConflictError, ChangeValidationError


@pytest.fixture
def service(db_session, broadcaster):
    return ChangeService(db_session, cache=RedisCache(None), broadcaster=broadcaster)


def _propose(service, changes, user_id="alice", entity_id="42"):
    return service.create_change_set(
        entity_type="product",
        entity_id=entity_id,
        changes=changes,
        user_id=user_id,
        tenant_id=DEFAULT_TENANT_ID,
    )


def _apply(service, change_set):
    service.process_change(
        entity_type="product",
        entity_id=str(change_set.entity_id),
        changes=dict(change_set.changes),
        user_id=str(change_set.user_id),
        tenant_id=DEFAULT_TENANT_ID,
        change_set_id=change_set.id,
    )
    return service.commit_change(change_set.id)


def _product(db_session, product_id="42"):
    db_session.expire_all()
    return db_session.query(Product).filter(Product.id == product_id).one()


def _broadcast_types(broadcaster):
    return [c.args[0] for c in broadcaster.broadcast.call_args_list]


class TestCreateChangeSet:
    def test_records_pending_proposal_without_touching_entity(
        self, service, product, db_session, broadcaster
    ):
        cs = _propose(service, {"price": 12})

        assert cs.status == ChangeSetStatus.PENDING.value
        assert cs.level == "optimistic"
        assert cs.conflict_ids == []
        assert cs.old_values is None
        assert _product(db_session).price == 10
        assert _broadcast_types(broadcaster) == [CHANGE_CREATED]

    def test_unknown_entity_type(self, service):
        with pytest.raises(ValueError, match="Unknown entity type"):
            service.create_change_set(
                entity_type="spaceship",
                entity_id="1",
                changes={"name": "x"},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
            )


class TestProcessChange:
    def test_applies_delta_and_records_version(self, service, product, db_session, broadcaster):
        result = service.process_change(
            entity_type="product",
            entity_id="42",
            changes={"price": 12},
            user_id="alice",
            tenant_id=DEFAULT_TENANT_ID,
        )

        assert result.success is True
        assert result.data["price"] == 12
        assert result.data["name"] == "Widget"
        assert result.version.version_number == 1
        assert result.version.data["price"] == 12
        assert _product(db_session).price == 12
        assert ENTITY_UPDATED in _broadcast_types(broadcaster)

        logs = db_session.query(AuditLog).filter(AuditLog.action == "change_applied").all()
        assert len(logs) == 1
        assert logs[0].changes["price"] == {"old": 10.0, "new": 12}
        assert logs[0].entity_id == "42"

    def test_version_numbers_increase_by_one(self, service, product):
        versions = []
        for price in (11, 12, 13):
            result = service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": price},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
            )
            versions.append(result.version.version_number)
        assert versions == [1, 2, 3]

    def test_with_change_set_moves_it_to_processing(self, service, product):
        cs = _propose(service, {"price": 12})

        result = service.process_change(
            entity_type="product",
            entity_id="42",
            changes={"price": 12},
            user_id="alice",
            tenant_id=DEFAULT_TENANT_ID,
            change_set_id=cs.id,
        )

        assert result.change_set is cs
        assert cs.status == ChangeSetStatus.PROCESSING.value
        assert cs.level == "processing"
        assert cs.old_values["price"] == 10.0
        assert cs.new_values["price"] == 12
        assert result.version.change_set_id == cs.id

    def test_missing_entity(self, service):
        with pytest.raises(ValueError, match="not found"):
            service.process_change(
                entity_type="product",
                entity_id="missing",
                changes={"price": 1},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
            )

    def test_entity_of_another_tenant_is_not_found(self, service, product):
        with pytest.raises(ValueError, match="not found"):
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": 1},
                user_id="alice",
                tenant_id=uuid.uuid4(),
            )

    def test_change_set_for_another_entity_is_refused(self, service, product, db_session):
        db_session.add(Product(id="43", tenant_id=DEFAULT_TENANT_ID, name="Gadget"))
        db_session.commit()
        cs = _propose(service, {"price": 5}, entity_id="43")

        with pytest.raises(ValueError, match="does not belong"):
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": 5},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
                change_set_id=cs.id,
            )

    def test_validation_error_writes_nothing(self, service, product, db_session):
        cs = _propose(service, {"price": -1})

        with pytest.raises(ChangeValidationError) as exc_info:
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": -1},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
                change_set_id=cs.id,
            )

        assert exc_info.value.errors == [
            {"field": "price", "message": "price must be greater than or equal to 0"}
        ]
        assert _product(db_session).price == 10
        assert db_session.query(VersionHistory).count() == 0
        assert db_session.query(AuditLog).count() == 0
        assert cs.status == ChangeSetStatus.PENDING.value

    def test_read_only_and_unknown_fields_are_rejected(self, service, product):
        with pytest.raises(ChangeValidationError) as exc_info:
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"id": "99", "colour": "red"},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
            )
        fields = {e["field"] for e in exc_info.value.errors}
        assert fields == {"id", "colour"}

    def test_version_marker_alone_is_not_a_change(self, service, product):
        future = int((datetime.now(UTC) + timedelta(hours=1)).timestamp() * 1000)
        with pytest.raises(ChangeValidationError) as exc_info:
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"_version": future},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
            )
        assert exc_info.value.errors[0]["field"] == "changes"

    def test_version_marker_is_not_written(self, service, product):
        future = int((datetime.now(UTC) + timedelta(hours=1)).timestamp() * 1000)
        result = service.process_change(
            entity_type="product",
            entity_id="42",
            changes={"price": 12, "_version": future},
            user_id="alice",
            tenant_id=DEFAULT_TENANT_ID,
        )
        assert "_version" not in result.data
        assert "_version" not in result.version.data

    def test_failure_rolls_back_every_write(self, service, product, db_session):
        cs = _propose(service, {"price": 12})

        with (
            patch.object(VersionHistoryRepository, "create", side_effect=RuntimeError("disk full")),
            pytest.raises(RuntimeError, match="disk full"),
        ):
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": 12},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
                change_set_id=cs.id,
            )

        assert _product(db_session).price == 10
        assert db_session.query(AuditLog).count() == 0
        refreshed = db_session.query(ChangeSet).filter(ChangeSet.id == cs.id).one()
        assert refreshed.status == ChangeSetStatus.PENDING.value
        assert refreshed.level == "optimistic"
        assert refreshed.old_values is None

    def test_audit_failure_does_not_abort_the_change(self, service, product, db_session):
        with patch.object(AuditLogRepository, "create", side_effect=RuntimeError("audit down")):
            result = service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": 12},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
            )

        assert result.success is True
        assert _product(db_session).price == 12
        assert db_session.query(VersionHistory).count() == 1
        assert db_session.query(AuditLog).count() == 0

    def test_invalidates_cache_and_mirrors_audit(self, db_session, product, broadcaster):
        client = MagicMock()
        client.keys.side_effect = lambda pattern: [pattern.replace("*", ":page:1").encode()]
        service = ChangeService(db_session, cache=RedisCache(client), broadcaster=broadcaster)

        service.process_change(
            entity_type="product",
            entity_id="42",
            changes={"price": 12},
            user_id="alice",
            tenant_id=DEFAULT_TENANT_ID,
        )

        client.delete.assert_any_call("product:42")
        client.delete.assert_any_call(f"tenant:{DEFAULT_TENANT_ID}:product:list:page:1")
        client.delete.assert_any_call("product:list:page:1")
        pipe = client.pipeline.return_value
        assert pipe.lpush.call_args.args[0] == f"audit:recent:{DEFAULT_TENANT_ID}:product:42"
        pipe.ltrim.assert_called_once_with(
            f"audit:recent:{DEFAULT_TENANT_ID}:product:42", 0, 9
        )


class TestConflicts:
    def test_stale_version_marks_change_set_conflicted(
        self, service, product, db_session, broadcaster
    ):
        cs = _propose(service, {"price": 12, "_version": 0})

        with pytest.raises(ChangeConflictError) as exc_info:
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": 12, "_version": 0},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
                change_set_id=cs.id,
            )

        err = exc_info.value
        assert [c["type"] for c in err.conflicts] == ["stale_data"]
        assert err.current["price"] == 10.0
        assert err.incoming == {"price": 12, "_version": 0}
        assert cs.status == ChangeSetStatus.CONFLICTED.value
        assert cs.conflict_ids == [err.conflicts[0]["id"]]
        assert db_session.query(ChangeConflict).count() == 1
        assert _product(db_session).price == 10
        assert db_session.query(VersionHistory).count() == 0
        assert CHANGE_CONFLICTED in _broadcast_types(broadcaster)

    def test_stale_version_without_change_set_is_applied(self, service, product, db_session):
        result = service.process_change(
            entity_type="product",
            entity_id="42",
            changes={"price": 12, "_version": 0},
            user_id="alice",
            tenant_id=DEFAULT_TENANT_ID,
        )
        assert result.success is True
        assert _product(db_session).price == 12
        assert db_session.query(ChangeConflict).count() == 0

    def test_concurrent_edit_by_another_user(self, service, product, db_session):
        other = _propose(service, {"price": 20}, user_id="bob")
        ChangeSetRepository(db_session).update(other, status=ChangeSetStatus.PROCESSING.value)
        mine = _propose(service, {"price": 12}, user_id="alice")

        with pytest.raises(ChangeConflictError) as exc_info:
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": 12},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
                change_set_id=mine.id,
            )

        conflict = exc_info.value.conflicts[0]
        assert conflict["type"] == "concurrent_edit"
        assert conflict["data"]["in_flight"][0]["change_set_id"] == str(other.id)
        assert conflict["data"]["in_flight"][0]["user_id"] == "bob"

    def test_own_in_flight_change_is_not_a_conflict(self, service, product, db_session):
        earlier = _propose(service, {"price": 20}, user_id="alice")
        ChangeSetRepository(db_session).update(earlier, status=ChangeSetStatus.PROCESSING.value)
        mine = _propose(service, {"price": 12}, user_id="alice")

        result = service.process_change(
            entity_type="product",
            entity_id="42",
            changes={"price": 12},
            user_id="alice",
            tenant_id=DEFAULT_TENANT_ID,
            change_set_id=mine.id,
        )
        assert result.success is True

    def test_invalid_version_marker(self, service, product):
        cs = _propose(service, {"price": 12, "_version": "yesterday"})
        with pytest.raises(ChangeValidationError) as exc_info:
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": 12, "_version": "yesterday"},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
                change_set_id=cs.id,
            )
        assert exc_info.value.errors[0]["field"] == "_version"


class TestCommitChange:
    def test_commit_marks_applied(self, service, product):
        cs = _propose(service, {"price": 12})
        committed = _apply(service, cs)

        assert committed.status == ChangeSetStatus.APPLIED.value
        assert committed.level == "committed"
        assert committed.applied_at is not None

    def test_commit_requires_processing(self, service, product):
        cs = _propose(service, {"price": 12})
        with pytest.raises(ValueError, match="Only processed changes can be committed"):
            service.commit_change(cs.id)

    def test_commit_unknown_change_set(self, service):
        with pytest.raises(ValueError, match="not found"):
            service.commit_change(uuid.uuid4())


class TestApproveChange:
    def test_approve_only(self, service, product, db_session, broadcaster):
        cs = _propose(service, {"price": 12})

        approved = service.approve_change(change_set_id=cs.id, approved_by="reviewer")

        assert approved.status == ChangeSetStatus.APPROVED.value
        assert approved.approved_by == "reviewer"
        assert approved.approved_at is not None
        assert _product(db_session).price == 10
        assert CHANGE_APPROVED in _broadcast_types(broadcaster)
        actions = [log.action for log in db_session.query(AuditLog).all()]
        assert actions == ["change_approved"]

    def test_approve_and_apply_immediately(self, service, product, db_session):
        cs = _propose(service, {"price": 12})

        approved = service.approve_change(
            change_set_id=cs.id, approved_by="reviewer", apply_immediately=True
        )

        assert approved.status == ChangeSetStatus.APPLIED.value
        assert approved.approved_by == "reviewer"
        assert _product(db_session).price == 12
        assert db_session.query(VersionHistory).count() == 1

    def test_cannot_approve_twice(self, service, product):
        cs = _propose(service, {"price": 12})
        service.approve_change(change_set_id=cs.id, approved_by="reviewer")
        with pytest.raises(ValueError, match="Cannot approve a approved change"):
            service.approve_change(change_set_id=cs.id, approved_by="reviewer")


class TestRejectChange:
    def test_reject_pending(self, service, product, db_session, broadcaster):
        cs = _propose(service, {"price": 12})

        rejected = service.reject_change(change_set_id=cs.id, rejected_by="reviewer", reason="no")

        assert rejected.status == ChangeSetStatus.REJECTED.value
        assert rejected.rejected_by == "reviewer"
        assert rejected.rejection_reason == "no"
        assert CHANGE_REJECTED in _broadcast_types(broadcaster)
        log = db_session.query(AuditLog).filter(AuditLog.action == "change_rejected").one()
        assert log.context["reason"] == "no"

    def test_rejected_change_can_never_be_applied(self, service, product, db_session):
        cs = _propose(service, {"price": 12})
        service.reject_change(change_set_id=cs.id, rejected_by="reviewer")

        with pytest.raises(ValueError, match="Cannot process a rejected change"):
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": 12},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
                change_set_id=cs.id,
            )
        with pytest.raises(ValueError, match="Cannot approve"):
            service.approve_change(change_set_id=cs.id, approved_by="reviewer")
        with pytest.raises(ValueError, match="Cannot reject"):
            service.reject_change(change_set_id=cs.id, rejected_by="reviewer")
        assert _product(db_session).price == 10

    def test_cannot_reject_applied(self, service, product):
        cs = _propose(service, {"price": 12})
        _apply(service, cs)
        with pytest.raises(ValueError, match="Cannot reject a applied change"):
            service.reject_change(change_set_id=cs.id, rejected_by="reviewer")


class TestRollbackChange:
    def test_round_trip_restores_previous_state(self, service, product, db_session, broadcaster):
        cs = _propose(service, {"price": 12})
        _apply(service, cs)
        assert _product(db_session).price == 12

        rollback = service.rollback_change(change_set_id=cs.id, user_id="alice")

        assert _product(db_session).price == 10
        assert rollback.id != cs.id
        assert rollback.status == ChangeSetStatus.APPLIED.value
        assert rollback.metadata_["rollback_of"] == str(cs.id)
        assert rollback.metadata_["original_change_set"]["changes"] == {"price": 12}
        assert rollback.changes["price"] == 10.0
        assert "updated_at" not in rollback.changes
        assert "id" not in rollback.changes

        original = db_session.query(ChangeSet).filter(ChangeSet.id == cs.id).one()
        assert original.status == ChangeSetStatus.ROLLED_BACK.value
        assert original.new_values["price"] == 12

        versions = VersionHistoryRepository(db_session).get_for_entity("product", "42")
        assert [v.version_number for v in versions] == [2, 1]
        assert versions[0].change_set_id == rollback.id
        assert CHANGE_ROLLED_BACK in _broadcast_types(broadcaster)

    def test_only_applied_changes_roll_back(self, service, product):
        cs = _propose(service, {"price": 12})
        with pytest.raises(ValueError, match="Can only rollback applied changes"):
            service.rollback_change(change_set_id=cs.id, user_id="alice")

    def test_rolled_back_change_cannot_roll_back_again(self, service, product):
        cs = _propose(service, {"price": 12})
        _apply(service, cs)
        service.rollback_change(change_set_id=cs.id, user_id="alice")
        with pytest.raises(ValueError, match="Can only rollback applied changes"):
            service.rollback_change(change_set_id=cs.id, user_id="alice")

    def test_snapshot_helper(self, service, product):
        cs = _propose(service, {"price": 12})
        _apply(service, cs)
        snapshot = change_set_snapshot(cs)
        assert snapshot["id"] == str(cs.id)
        assert snapshot["status"] == "applied"
        assert snapshot["applied_at"] is not None


class TestResolveConflict:
    @pytest.fixture
    def conflicted(self, service, product):
        cs = _propose(service, {"price": 12, "_version": 0})
        with pytest.raises(ChangeConflictError) as exc_info:
            service.process_change(
                entity_type="product",
                entity_id="42",
                changes={"price": 12, "_version": 0},
                user_id="alice",
                tenant_id=DEFAULT_TENANT_ID,
                change_set_id=cs.id,
            )
        return cs, uuid.UUID(exc_info.value.conflicts[0]["id"])

    def test_accept_current_rejects_change(self, service, conflicted, db_session, broadcaster):
        cs, conflict_id = conflicted

        result = service.resolve_conflict(
            conflict_id=conflict_id, resolution="accept_current", resolved_by="reviewer"
        )

        assert result.status == ChangeSetStatus.REJECTED.value
        assert _product(db_session).price == 10
        conflict = db_session.query(ChangeConflict).filter(ChangeConflict.id == conflict_id).one()
        assert conflict.resolution == "accept_current"
        assert conflict.resolved_by == "reviewer"
        assert conflict.resolved_at is not None
        assert CONFLICT_RESOLVED in _broadcast_types(broadcaster)

    def test_accept_incoming_applies_original_delta(self, service, conflicted, db_session):
        cs, conflict_id = conflicted

        result = service.resolve_conflict(
            conflict_id=conflict_id, resolution="accept_incoming", resolved_by="reviewer"
        )

        assert result.status == ChangeSetStatus.APPLIED.value
        assert _product(db_session).price == 12

    def test_merge_applies_merged_changes(self, service, conflicted, db_session):
        cs, conflict_id = conflicted

        result = service.resolve_conflict(
            conflict_id=conflict_id,
            resolution="merge",
            resolved_by="reviewer",
            merged_changes={"price": 11, "stock": 7},
        )

        assert result.status == ChangeSetStatus.APPLIED.value
        assert result.metadata_["merged_changes"] == {"price": 11, "stock": 7}
        assert result.metadata_["merged_by"] == "reviewer"
        current = _product(db_session)
        assert current.price == 11
        assert current.stock == 7

    def test_merge_requires_merged_changes(self, service, conflicted):
        _, conflict_id = conflicted
        with pytest.raises(ValueError, match="merged_changes is required"):
            service.resolve_conflict(
                conflict_id=conflict_id, resolution="merge", resolved_by="reviewer"
            )

    def test_already_resolved(self, service, conflicted):
        _, conflict_id = conflicted
        service.resolve_conflict(
            conflict_id=conflict_id, resolution="accept_current", resolved_by="reviewer"
        )
        with pytest.raises(ValueError, match="already resolved"):
            service.resolve_conflict(
                conflict_id=conflict_id, resolution="accept_incoming", resolved_by="reviewer"
            )

    def test_unknown_conflict(self, service):
        with pytest.raises(ValueError, match="not found"):
            service.resolve_conflict(
                conflict_id=uuid.uuid4(), resolution="accept_current", resolved_by="reviewer"
            )

    def test_get_conflicts(self, service, conflicted):
        cs, conflict_id = conflicted
        conflicts = service.get_conflicts(cs.id)
        assert [c.id for c in conflicts] == [conflict_id]


class TestChangeHistory:
    def test_diffs_against_previous_change(self, service, product):
        first = _propose(service, {"price": 12})
        _apply(service, first)
        second = _propose(service, {"price": 15})
        _apply(service, second)

        history = service.get_change_history(entity_type="product", entity_id="42")

        assert history["total"] == 2
        newest, oldest = history["changes"]
        assert newest["change"].id == second.id
        assert newest["diff"] == {"price": {"old": 12, "new": 15}}
        assert newest["version"].version_number == 2
        assert oldest["change"].id == first.id
        assert oldest["diff"] == {"price": {"old": 10.0, "new": 12}}

    def test_last_entry_of_a_page_still_diffs_against_its_predecessor(self, service, product):
        for price in (11, 12, 13):
            _apply(service, _propose(service, {"price": price}))

        history = service.get_change_history(entity_type="product", entity_id="42", limit=2)

        assert history["total"] == 3
        assert len(history["changes"]) == 2
        assert history["changes"][1]["diff"] == {"price": {"old": 11, "new": 12}}

    def test_rolled_back_changes_are_hidden_by_default(self, service, product):
        cs = _propose(service, {"price": 12})
        _apply(service, cs)
        service.rollback_change(change_set_id=cs.id, user_id="alice")

        default = service.get_change_history(entity_type="product", entity_id="42")
        everything = service.get_change_history(
            entity_type="product", entity_id="42", include_rollbacks=True
        )

        assert default["total"] == 1
        assert everything["total"] == 2

    def test_empty_history(self, service, product):
        history = service.get_change_history(entity_type="product", entity_id="42")
        assert history == {"changes": [], "total": 0}


class TestReads:
    def test_list_change_sets(self, service, product):
        first = _propose(service, {"price": 12})
        _propose(service, {"price": 13})
        service.reject_change(change_set_id=first.id, rejected_by="reviewer")

        everything = service.list_change_sets(DEFAULT_TENANT_ID)
        rejected = service.list_change_sets(DEFAULT_TENANT_ID, status="rejected")

        assert everything["total"] == 2
        assert rejected["total"] == 1
        assert rejected["items"][0].id == first.id

    def test_change_sets_are_tenant_scoped(self, service, product):
        cs = _propose(service, {"price": 12})
        assert service.get_change_set(cs.id, DEFAULT_TENANT_ID) is cs
        assert service.get_change_set(cs.id, uuid.uuid4()) is None

    def test_version_lookup(self, service, product):
        _apply(service, _propose(service, {"price": 12}))
        _apply(service, _propose(service, {"price": 13}))

        assert service.get_version("product", "42", 1).data["price"] == 12
        assert service.get_version("product", "42", 3) is None
        assert len(service.get_version_history("product", "42")) == 2
