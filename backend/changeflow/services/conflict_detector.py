"""Optimistic conflict detection for incoming changes.

Two independent checks, both advisory:

* CONCURRENT_EDIT - another user has a changeset on the same entity in
  ``processing`` that was created inside the conflict window.
* STALE_DATA - the caller sent the ``_version`` (the ``updated_at`` it last
  saw) and the stored entity has been updated since.

Neither check locks anything; the caller resolves the reported conflicts
explicitly before the change may proceed.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from changeflow.core.config import settings
from changeflow.models.change_conflict import ConflictType
from changeflow.models.shared import ensure_utc
from changeflow.repositories.change_set_repository import ChangeSetRepository
from changeflow.services.errors import ChangeValidationError

VERSION_FIELD = "_version"


def parse_version(value: Any) -> datetime:
    """Interpret a ``_version`` marker as a UTC timestamp.

    Numbers are epoch milliseconds; strings are ISO-8601 (or numeric).
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Invalid version marker: {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch_ms(value)
    if isinstance(value, str):
        try:
            millis = float(value)
        except ValueError:
            return ensure_utc(datetime.fromisoformat(value))
        return _from_epoch_ms(millis)
    raise ValueError(f"Invalid version marker: {value!r}")


def _from_epoch_ms(millis: float) -> datetime:
    # inf, nan and far-future values are outside what datetime can hold
    try:
        return datetime.fromtimestamp(millis / 1000, UTC)
    except (ValueError, OverflowError, OSError):
        raise ValueError(f"Version marker out of range: {millis!r}") from None


class ConflictDetector:
    def __init__(
        self,
        db: Session,
        window_seconds: int | None = None,
        strict_staleness: bool | None = None,
    ):
        self.change_set_repo = ChangeSetRepository(db)
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.CONFLICT_WINDOW_SECONDS
        )
        self.strict_staleness = (
            strict_staleness if strict_staleness is not None else settings.STALE_DATA_STRICT
        )

    def detect(
        self,
        *,
        entity_type: str,
        entity_id: str,
        user_id: str,
        current: dict[str, Any] | None,
        incoming: dict[str, Any],
        change_set_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        """Return a list of ``{"type", "data"}`` conflicts, empty when the change may proceed."""
        conflicts: list[dict[str, Any]] = []

        concurrent = self._concurrent_edit(entity_type, entity_id, user_id, change_set_id)
        if concurrent is not None:
            conflicts.append(concurrent)

        stale = self._stale_data(current, incoming)
        if stale is not None:
            conflicts.append(stale)

        return conflicts

    def _concurrent_edit(
        self,
        entity_type: str,
        entity_id: str,
        user_id: str,
        change_set_id: UUID | None,
    ) -> dict[str, Any] | None:
        since = datetime.now(UTC) - timedelta(seconds=self.window_seconds)
        in_flight = self.change_set_repo.find_in_flight(
            entity_type=entity_type,
            entity_id=entity_id,
            since=since,
            exclude_user_id=user_id,
            exclude_change_set_id=change_set_id,
        )
        if not in_flight:
            return None
        return {
            "type": ConflictType.CONCURRENT_EDIT.value,
            "data": {
                "message": "Another user is currently editing this entity",
                "window_seconds": self.window_seconds,
                "in_flight": [
                    {
                        "change_set_id": str(cs.id),
                        "user_id": cs.user_id,
                        "changes": cs.changes,
                        "created_at": ensure_utc(cs.created_at).isoformat(),
                    }
                    for cs in in_flight
                ],
            },
        }

    def _stale_data(
        self, current: dict[str, Any] | None, incoming: dict[str, Any]
    ) -> dict[str, Any] | None:
        if not current or incoming.get(VERSION_FIELD) is None or not current.get("updated_at"):
            return None

        try:
            incoming_version = parse_version(incoming[VERSION_FIELD])
        except ValueError:
            raise ChangeValidationError(
                [{"field": VERSION_FIELD, "message": "Invalid version marker"}]
            ) from None
        current_version = parse_version(current["updated_at"])

        if self.strict_staleness:
            is_stale = current_version > incoming_version
        else:
            is_stale = current_version >= incoming_version
        if not is_stale:
            return None

        return {
            "type": ConflictType.STALE_DATA.value,
            "data": {
                "message": "The entity was modified after the incoming change was prepared",
                "current_version": current_version.isoformat(),
                "incoming_version": incoming_version.isoformat(),
            },
        }
