"""Registry of entity types that can be changed through changesets.

Each entity type string maps to a repository adapter that can read the
current state of one row as a plain dict and apply a partial update to it,
plus the field rules a proposed delta must satisfy. Unknown entity types
raise instead of being looked up dynamically.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import BigInteger, Column, Integer, Numeric, SmallInteger, String, inspect
from sqlalchemy.orm import Session

from changeflow.core.database import Base
from changeflow.models.shared import ensure_utc, utc_now

READ_ONLY_FIELDS = frozenset({"id", "tenant_id", "created_at", "updated_at"})
REQUIRED_COLUMNS = ("id", "tenant_id", "updated_at")

# Ranges of the portable SQL integer types, most specific first
INTEGER_RANGES = (
    (SmallInteger, -(2**15), 2**15 - 1),
    (BigInteger, -(2**63), 2**63 - 1),
    (Integer, -(2**31), 2**31 - 1),
)

FieldRule = Callable[[dict[str, Any]], list[dict[str, str]]]


def _error(field_name: str, message: str) -> dict[str, str]:
    return {"field": field_name, "message": message}


def required(field_name: str) -> FieldRule:
    """The field may not be set to null or an empty string."""

    def rule(changes: dict[str, Any]) -> list[dict[str, str]]:
        if field_name in changes and changes[field_name] in (None, ""):
            return [_error(field_name, f"{field_name} is required")]
        return []

    return rule


def non_negative(field_name: str) -> FieldRule:
    """The field must be a number >= 0."""

    def rule(changes: dict[str, Any]) -> list[dict[str, str]]:
        if field_name not in changes:
            return []
        value = changes[field_name]
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            return [_error(field_name, f"{field_name} must be a number")]
        if isinstance(value, (float, Decimal)) and math.isnan(value):
            return [_error(field_name, f"{field_name} must be a number")]
        if value < 0:
            return [_error(field_name, f"{field_name} must be greater than or equal to 0")]
        return []

    return rule


def max_length(field_name: str, limit: int) -> FieldRule:
    def rule(changes: dict[str, Any]) -> list[dict[str, str]]:
        value = changes.get(field_name)
        if isinstance(value, str) and len(value) > limit:
            return [_error(field_name, f"{field_name} must be at most {limit} characters")]
        return []

    return rule


def one_of(field_name: str, choices: list[str]) -> FieldRule:
    def rule(changes: dict[str, Any]) -> list[dict[str, str]]:
        if field_name in changes and changes[field_name] not in choices:
            allowed = ", ".join(choices)
            return [_error(field_name, f"{field_name} must be one of: {allowed}")]
        return []

    return rule


def serialize_value(value: Any) -> Any:
    """Convert a column value into something a JSON snapshot can hold."""
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def column_error(column: Column, value: Any) -> str | None:  # type: ignore[type-arg]
    """Check that ``value`` can be stored in ``column``; return the problem if not."""
    name = column.key
    if value is None:
        return None if column.nullable else f"{name} may not be null"

    column_type = column.type
    if isinstance(column_type, String):
        if not isinstance(value, str):
            return f"{name} must be a string"
    elif isinstance(column_type, Integer):
        if isinstance(value, bool) or not isinstance(value, int):
            return f"{name} must be an integer"
        for type_, low, high in INTEGER_RANGES:
            if isinstance(column_type, type_):
                if not low <= value <= high:
                    return f"{name} must be between {low} and {high}"
                break
    elif isinstance(column_type, Numeric):
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            return f"{name} must be a number"
        if isinstance(value, int):
            if not -(2**63) <= value <= 2**63 - 1:
                return f"{name} is out of range"
        elif not math.isfinite(value):
            return f"{name} must be a finite number"
    return None


class EntityRepository:
    """Access to the current state of one kind of versioned entity."""

    def fields(self) -> set[str]:
        raise NotImplementedError

    def check(self) -> None:
        """Raise ValueError when the adapter cannot back changesets."""

    def field_errors(self, changes: dict[str, Any]) -> list[dict[str, str]]:
        """Type errors for values the backing store cannot hold."""
        return []

    def get(self, db: Session, entity_id: str, tenant_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def update(
        self,
        db: Session,
        entity_id: str,
        tenant_id: UUID,
        delta: dict[str, Any],
        *,
        commit: bool = True,
    ) -> dict[str, Any]:
        raise NotImplementedError


class SqlAlchemyEntityRepository(EntityRepository):
    """Adapter for any model with ``id``, ``tenant_id`` and ``updated_at`` columns."""

    def __init__(self, model: type[Base]):
        self.model = model

    def fields(self) -> set[str]:
        return {attr.key for attr in inspect(self.model).column_attrs}

    def check(self) -> None:
        missing = [name for name in REQUIRED_COLUMNS if name not in self.fields()]
        if missing:
            raise ValueError(
                f"{self.model.__name__} cannot be versioned, missing columns: {', '.join(missing)}"
            )

    def field_errors(self, changes: dict[str, Any]) -> list[dict[str, str]]:
        columns = inspect(self.model).columns
        errors = []
        for key, value in changes.items():
            if key not in columns:
                continue
            message = column_error(columns[key], value)
            if message is not None:
                errors.append(_error(key, message))
        return errors

    def to_dict(self, obj: Any) -> dict[str, Any]:
        return {key: serialize_value(getattr(obj, key)) for key in sorted(self.fields())}

    def _load(self, db: Session, entity_id: str, tenant_id: UUID) -> Any | None:
        return (
            db.query(self.model)
            .filter(self.model.id == entity_id, self.model.tenant_id == tenant_id)
            .first()
        )

    def get(self, db: Session, entity_id: str, tenant_id: UUID) -> dict[str, Any] | None:
        obj = self._load(db, entity_id, tenant_id)
        if obj is None:
            return None
        return self.to_dict(obj)

    def update(
        self,
        db: Session,
        entity_id: str,
        tenant_id: UUID,
        delta: dict[str, Any],
        *,
        commit: bool = True,
    ) -> dict[str, Any]:
        obj = self._load(db, entity_id, tenant_id)
        if obj is None:
            raise ValueError(f"{self.model.__name__} {entity_id} not found")
        for key, value in delta.items():
            setattr(obj, key, value)
        obj.updated_at = utc_now()
        if commit:
            db.commit()
            db.refresh(obj)
        else:
            db.flush()
        return self.to_dict(obj)


@dataclass
class EntityRegistration:
    entity_type: str
    repository: EntityRepository
    rules: list[FieldRule] = field(default_factory=list)


class EntityRegistry:
    def __init__(self) -> None:
        self._entries: dict[str, EntityRegistration] = {}

    def register(
        self,
        entity_type: str,
        repository: EntityRepository,
        rules: list[FieldRule] | None = None,
    ) -> EntityRegistration:
        if entity_type in self._entries:
            raise ValueError(f"Entity type '{entity_type}' is already registered")
        entry = EntityRegistration(entity_type, repository, list(rules or []))
        self._entries[entity_type] = entry
        return entry

    def get(self, entity_type: str) -> EntityRegistration:
        entry = self._entries.get(entity_type)
        if entry is None:
            raise ValueError(f"Unknown entity type: {entity_type}")
        return entry

    def is_registered(self, entity_type: str) -> bool:
        return entity_type in self._entries

    @property
    def entity_types(self) -> list[str]:
        return sorted(self._entries)

    def validate(self) -> None:
        """Check every registered adapter. Called once at application startup."""
        for entry in self._entries.values():
            entry.repository.check()

    def validate_changes(self, entity_type: str, changes: dict[str, Any]) -> list[dict[str, str]]:
        """Return the field errors for a proposed delta (empty when valid)."""
        entry = self.get(entity_type)
        known = entry.repository.fields()
        errors: list[dict[str, str]] = []
        for key in changes:
            if key in READ_ONLY_FIELDS:
                errors.append(_error(key, f"{key} is read-only"))
            elif key not in known:
                errors.append(_error(key, f"Unknown field '{key}' for {entity_type}"))
        writable = {
            key: value
            for key, value in changes.items()
            if key in known and key not in READ_ONLY_FIELDS
        }
        errors.extend(entry.repository.field_errors(writable))

        # Rules only see values that already fit their column
        flagged = {error["field"] for error in errors}
        checked = {key: value for key, value in writable.items() if key not in flagged}
        for rule in entry.rules:
            errors.extend(rule(checked))
        return errors

    def writable(self, entity_type: str, values: dict[str, Any]) -> dict[str, Any]:
        """Drop read-only and unknown keys from a snapshot so it can be re-applied."""
        known = self.get(entity_type).repository.fields()
        return {
            key: value
            for key, value in values.items()
            if key in known and key not in READ_ONLY_FIELDS
        }
