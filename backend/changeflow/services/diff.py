"""Field-level diffs between entity snapshots."""

from typing import Any


def compute_diff(
    old: dict[str, Any] | None,
    new: dict[str, Any] | None,
    ignore: frozenset[str] = frozenset(),
) -> dict[str, dict[str, Any]]:
    """Return ``{field: {"old": ..., "new": ...}}`` for every field that differs.

    Fields missing on one side are reported as ``None`` on that side.
    """
    old = old or {}
    new = new or {}
    changes: dict[str, dict[str, Any]] = {}
    for key in sorted(set(old) | set(new)):
        if key in ignore:
            continue
        old_val = old.get(key)
        new_val = new.get(key)
        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}
    return changes


def declared_diff(
    changes: dict[str, Any], old_values: dict[str, Any] | None
) -> dict[str, dict[str, Any]]:
    """Diff built from a changeset's own delta, for entries without a predecessor."""
    old_values = old_values or {}
    return {key: {"old": old_values.get(key), "new": value} for key, value in changes.items()}
