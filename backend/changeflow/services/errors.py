"""Errors raised by the change pipeline that callers are expected to handle."""

from typing import Any


class ChangeConflictError(Exception):
    """The change collides with a concurrent edit or was based on stale data.

    The caller has to resolve the recorded conflicts before retrying.
    """

    def __init__(
        self,
        conflicts: list[dict[str, Any]],
        current: dict[str, Any] | None,
        incoming: dict[str, Any],
    ):
        super().__init__("Change conflicts with the current state of the entity")
        self.conflicts = conflicts
        self.current = current
        self.incoming = incoming

    def to_dict(self) -> dict[str, Any]:
        return {
            "conflicts": self.conflicts,
            "current": self.current,
            "incoming": self.incoming,
        }


class ChangeValidationError(Exception):
    """The proposed delta breaks one or more field rules. Nothing was written."""

    def __init__(self, errors: list[dict[str, str]]):
        super().__init__("Change failed validation")
        self.errors = errors
