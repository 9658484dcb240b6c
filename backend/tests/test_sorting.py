"""Tests for the apply_order_by ordering helper."""

import pytest
from fastapi.testclient import TestClient

from changeflow.core.sorting import apply_order_by
from changeflow.main import app
from changeflow.models import AuditLog
from changeflow.models.shared import DEFAULT_TENANT_ID
from changeflow.repositories.audit_log_repository import AuditLogRepository


@pytest.fixture
def seed_logs(db_session):
    repo = AuditLogRepository(db_session)
    for action in ("bravo", "alpha", "charlie"):
        repo.create(tenant_id=DEFAULT_TENANT_ID, action=action, entity_type="product")


def _actions(db_session, order_by, **kwargs):
    query = db_session.query(AuditLog)
    return [log.action for log in apply_order_by(query, AuditLog, order_by, **kwargs).all()]


class TestApplyOrderBy:
    def test_valid_field_ascending(self, db_session, seed_logs):
        assert _actions(db_session, "action:asc") == ["alpha", "bravo", "charlie"]

    def test_valid_field_descending(self, db_session, seed_logs):
        assert _actions(db_session, "action:desc") == ["charlie", "bravo", "alpha"]

    def test_missing_direction_defaults_to_ascending(self, db_session, seed_logs):
        assert _actions(db_session, "action") == ["alpha", "bravo", "charlie"]

    def test_unknown_field_falls_back_to_default(self, db_session, seed_logs):
        expected = _actions(db_session, None)
        assert _actions(db_session, "nonexistent:asc") == expected

    def test_field_outside_allow_list_is_ignored(self, db_session, seed_logs):
        expected = _actions(db_session, None)
        assert _actions(db_session, "action:asc", allowed_fields=["created_at"]) == expected

    def test_api_order_by(self, db_session, seed_logs):
        response = TestClient(app).get("/v1/audit_logs/", params={"order_by": "action:asc"})
        assert [item["action"] for item in response.json()["items"]] == [
            "alpha",
            "bravo",
            "charlie",
        ]
