"""Merge an authoritative workspace snapshot into a locally held copy.

The local copy is the JSON shape returned by ``GET /v1/workspaces/{id}``,
possibly mutated optimistically and carrying extra UI-only keys. Patching
walks both trees and writes only what differs, so dicts that did not change
keep their identity and any transient keys attached to them. Keys present
locally but absent from the snapshot are left alone.

Every function returns the number of writes it made; ``0`` means the local
copy already matched.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Iterable, MutableSequence, Sequence

__all__ = [
    "same",
    "patch_scalars",
    "align_order",
    "reconcile_by_id",
    "patch_card",
    "patch_column",
    "patch_tool",
    "patch_members",
    "patch_workspace",
]

Patch = Callable[[dict, dict], int]

WORKSPACE_LISTS = ("columns", "backlog", "tools", "members")


def same(left: Any, right: Any) -> bool:
    """Structural equality for JSON values."""

    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(same(left[k], right[k]) for k in left)
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(same(a, b) for a, b in zip(left, right))
    if isinstance(left, bool) or isinstance(right, bool):
        return left is right
    return left == right


def patch_scalars(local: dict, remote: dict, skip: Iterable[str] = ()) -> int:
    """Copy every field of *remote* that differs into *local*."""

    skipped = set(skip)
    writes = 0
    for key, value in remote.items():
        if key in skipped:
            continue
        if key not in local or not same(local[key], value):
            local[key] = copy.deepcopy(value)
            writes += 1
    return writes


def align_order(items: MutableSequence[dict], ordered_keys: Sequence[Any], key: str = "id") -> int:
    """Reorder *items* in place to follow *ordered_keys*.

    Only valid when both describe the same member set; returns ``1`` when the
    sequence had to change.
    """

    current = [item[key] for item in items]
    if current == list(ordered_keys):
        return 0
    if sorted(map(str, current)) != sorted(map(str, ordered_keys)):
        raise ValueError("align_order needs the same members on both sides")
    position = {value: index for index, value in enumerate(ordered_keys)}
    items[:] = sorted(items, key=lambda item: position[item[key]])
    return 1


def reconcile_by_id(
    local_items: MutableSequence[dict],
    remote_items: Sequence[dict],
    patch: Patch = patch_scalars,
    key: str = "id",
) -> int:
    """Match list entries by *key*: drop, patch, add, then align order."""

    remote_keys = [item[key] for item in remote_items]
    wanted = set(remote_keys)
    by_key = {item[key]: item for item in local_items if item[key] in wanted}
    writes = len(local_items) - len(by_key)
    changed_members = writes > 0

    for remote in remote_items:
        local = by_key.get(remote[key])
        if local is None:
            by_key[remote[key]] = copy.deepcopy(remote)
            writes += 1
            changed_members = True
        else:
            writes += patch(local, remote)

    if changed_members:
        local_items[:] = [by_key[k] for k in remote_keys]
        return writes
    return writes + align_order(local_items, remote_keys, key)


def patch_card(local: dict, remote: dict) -> int:
    return patch_scalars(local, remote)


def patch_tool(local: dict, remote: dict) -> int:
    return patch_scalars(local, remote)


def patch_column(local: dict, remote: dict) -> int:
    writes = patch_scalars(local, remote, skip=("cards",))
    cards = local.setdefault("cards", [])
    return writes + reconcile_by_id(cards, remote.get("cards", []), patch_card)


def patch_members(local_members: MutableSequence[dict], remote_members: Sequence[dict]) -> int:
    return reconcile_by_id(local_members, remote_members, patch_scalars, key="user_id")


def patch_workspace(local: dict, remote: dict) -> int:
    """Bring a whole local workspace copy up to date with *remote*."""

    writes = patch_scalars(local, remote, skip=WORKSPACE_LISTS)
    writes += reconcile_by_id(local.setdefault("columns", []), remote.get("columns", []), patch_column)
    writes += reconcile_by_id(local.setdefault("backlog", []), remote.get("backlog", []), patch_card)
    writes += reconcile_by_id(local.setdefault("tools", []), remote.get("tools", []), patch_tool)
    writes += patch_members(local.setdefault("members", []), remote.get("members", []))
    return writes
