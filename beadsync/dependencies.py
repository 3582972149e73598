"""Dependency edge extraction and validation over the current item list.

Edges point from an item to the items it depends on. Validation is read-only;
adding an accepted edge is done through the bd CLI and only observed on the
next snapshot reload.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from beadsync.models import DependencyLink, Item

BEAD_ID_PATTERN = re.compile(r"[A-Za-z0-9._-]{1,64}")

_VALIDATION_MESSAGES = {
    "missing_source": "Source issue is required.",
    "missing_target": "Target issue is required.",
    "invalid_source": "Source issue id is invalid.",
    "invalid_target": "Target issue id is invalid.",
    "self": "Cannot create a dependency on the same issue.",
    "duplicate": "This dependency already exists.",
    "cycle": "Adding this dependency would create a cycle.",
}


@dataclass(frozen=True)
class DependencyValidationResult:
    ok: bool
    reason: Optional[str] = None


def sanitize_dependency_id(value: Any) -> Optional[str]:
    """Trim and validate an issue id before it reaches a CLI call."""
    if not isinstance(value, str):
        return None
    token = value.strip()
    if not token or not BEAD_ID_PATTERN.fullmatch(token):
        return None
    return token


def normalize_dependency_type(raw_type: Optional[str]) -> str:
    token = (raw_type or "").strip().lower()
    if token in ("blocks", "block"):
        return "blocks"
    if token in ("parent-child", "parent_child", "parentchild"):
        return "parent-child"
    return "related"


def extract_dependency_links(raw: Any) -> list[DependencyLink]:
    """Read ``dependencies`` from a raw bd issue object."""
    if not isinstance(raw, dict):
        return []
    deps = raw.get("dependencies") or []
    if not isinstance(deps, list):
        return []

    links: list[DependencyLink] = []
    for dep in deps:
        if not isinstance(dep, dict):
            continue
        dep_id = dep.get("depends_on_id") or dep.get("id")
        safe_id = sanitize_dependency_id(dep_id)
        if not safe_id:
            continue
        links.append(
            DependencyLink(
                id=safe_id,
                type=normalize_dependency_type(dep.get("dep_type") or dep.get("type")),
            )
        )
    return links


def _edge_map(items: Iterable[Item]) -> dict[str, list[str]]:
    edges: dict[str, list[str]] = {}
    for item in items:
        edges.setdefault(item.id, []).extend(item.dependency_ids)
    return edges


def has_dependency(items: Iterable[Item], source_id: str, target_id: str) -> bool:
    """Return True when the edge source -> target already exists."""
    return target_id in _edge_map(items).get(source_id, [])


def has_dependency_path(items: Iterable[Item], from_id: str, to_id: str) -> bool:
    """Depth-first search for a path from ``from_id`` to ``to_id``."""
    if from_id == to_id:
        return True
    edges = _edge_map(items)
    visited: set[str] = set()
    stack = [from_id]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        for next_id in edges.get(current, []):
            if next_id == to_id:
                return True
            if next_id not in visited:
                stack.append(next_id)
    return False


def validate_dependency_add_with_reason(
    items: list[Item],
    source_id: Optional[str],
    target_id: Optional[str],
) -> DependencyValidationResult:
    if not source_id:
        return DependencyValidationResult(ok=False, reason="missing_source")
    if not target_id:
        return DependencyValidationResult(ok=False, reason="missing_target")

    safe_source = sanitize_dependency_id(source_id)
    if not safe_source:
        return DependencyValidationResult(ok=False, reason="invalid_source")
    safe_target = sanitize_dependency_id(target_id)
    if not safe_target:
        return DependencyValidationResult(ok=False, reason="invalid_target")

    if safe_source == safe_target:
        return DependencyValidationResult(ok=False, reason="self")

    if has_dependency(items, safe_source, safe_target):
        return DependencyValidationResult(ok=False, reason="duplicate")

    # The new edge closes a loop if the target already reaches the source.
    if has_dependency_path(items, safe_target, safe_source):
        return DependencyValidationResult(ok=False, reason="cycle")

    return DependencyValidationResult(ok=True)


def dependency_validation_message(reason: Optional[str]) -> str:
    return _VALIDATION_MESSAGES.get(reason or "", "Cannot add this dependency.")


def validate_dependency_add(items: list[Item], source_id: str, target_id: str) -> Optional[str]:
    """Return a user-facing error message when the edge is rejected, else None."""
    result = validate_dependency_add_with_reason(items, source_id, target_id)
    if result.ok:
        return None
    return dependency_validation_message(result.reason)
