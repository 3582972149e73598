"""Parse bd JSON output and data files into Item models."""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Iterable, Optional

from beadsync.dependencies import extract_dependency_links, normalize_dependency_type
from beadsync.models import Item, LoadedDocument
from beadsync.status import normalize_status

_ID_KEYS = ["id", "uuid", "beadId"]
_TITLE_KEYS = ["title", "name"]
_DESCRIPTION_KEYS = ["description", "desc", "body"]
_STATUS_KEYS = ["status", "state"]
_UPDATED_KEYS = ["updated_at", "updatedAt", "modified_at", "modifiedAt"]
_ISSUE_TYPE_KEYS = ["issue_type", "issueType", "type"]
_EXTERNAL_REF_KEYS = [
    "external_reference_id",
    "externalReferenceId",
    "external_ref",
    "external_reference",
    "externalRefId",
]
_ASSIGNEE_KEYS = ["assignee", "assignee_name", "assigneeName", "assigned_to", "owner", "user", "author"]
_NUMBER_SPLIT_RE = re.compile(r"(\d+)")


def pick_value(entry: Any, keys: list[str], fallback: Optional[str] = None) -> Optional[str]:
    if not isinstance(entry, dict):
        return fallback
    for key in keys:
        value = entry.get(key)
        if value is None:
            continue
        return str(value)
    return fallback


def pick_labels(entry: Any) -> list[str]:
    if not isinstance(entry, dict):
        return []
    candidate = entry.get("labels") or entry.get("tags") or entry.get("tag_list")
    if isinstance(candidate, list):
        raw = [str(tag).strip() for tag in candidate]
    elif isinstance(candidate, str):
        raw = [tag.strip() for tag in candidate.split(",")]
    else:
        return []
    # Labels are a set; keep first-seen order for stable display.
    return list(dict.fromkeys(tag for tag in raw if tag))


def pick_assignee(entry: Any) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    for key in _ASSIGNEE_KEYS:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict):
            name = value.get("name")
            if isinstance(name, str) and name.strip():
                return name.strip()
    return None


def pick_priority(entry: Any) -> Optional[int]:
    if not isinstance(entry, dict):
        return None
    value = entry.get("priority")
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_item(entry: Any, index: int = 0) -> Item:
    """Map one raw bd issue object onto an Item, tolerating key variants."""
    raw = entry if isinstance(entry, dict) else {}
    fallback_id = f"bead-{index}"
    item_id = pick_value(raw, _ID_KEYS) or fallback_id
    status = pick_value(raw, _STATUS_KEYS)
    updated_at = pick_value(raw, _UPDATED_KEYS)

    external_ref_id = None
    external_ref_description = None
    external_ref = pick_value(raw, _EXTERNAL_REF_KEYS)
    if external_ref:
        ref_id, sep, ref_description = external_ref.partition(":")
        external_ref_id = ref_id
        external_ref_description = ref_description if sep else None

    blocking = 0
    parent_id = None
    for dep in raw.get("dependencies") or []:
        if not isinstance(dep, dict):
            continue
        dep_type = normalize_dependency_type(dep.get("dep_type") or dep.get("type"))
        if dep_type == "blocks":
            blocking += 1
        elif dep_type == "parent-child":
            parent_id = dep.get("depends_on_id") or parent_id

    return Item(
        id=item_id,
        title=pick_value(raw, _TITLE_KEYS) or item_id,
        status=status,
        priority=pick_priority(raw),
        dependencies=extract_dependency_links(raw),
        labels=pick_labels(raw),
        description=pick_value(raw, _DESCRIPTION_KEYS),
        assignee=pick_assignee(raw),
        updatedAt=updated_at,
        inProgressSince=updated_at if normalize_status(status) == "in_progress" else None,
        issueType=pick_value(raw, _ISSUE_TYPE_KEYS),
        parentId=parent_id,
        blockingDepsCount=blocking,
        externalReferenceId=external_ref_id,
        externalReferenceDescription=external_ref_description,
        raw=raw,
    )


def normalize_items(entries: Iterable[Any]) -> list[Item]:
    return [normalize_item(entry, index) for index, entry in enumerate(entries)]


def natural_sort_key(item_id: str) -> tuple:
    """Numeric-aware ordering key: ``bd-2`` sorts before ``bd-10``."""
    parts = _NUMBER_SPLIT_RE.split(item_id or "")
    # re.split with a capture group alternates text / digits, so each position
    # always holds the same type and tuples compare cleanly.
    return tuple(int(part) if idx % 2 else part for idx, part in enumerate(parts))


def sort_items(items: Iterable[Item]) -> list[Item]:
    return sorted(items, key=lambda item: natural_sort_key(item.id))


def extract_items(root: Any) -> Optional[list[Any]]:
    if isinstance(root, list):
        return root
    if isinstance(root, dict):
        for key in ("beads", "issues"):
            if isinstance(root.get(key), list):
                return root[key]
        project = root.get("project")
        if isinstance(project, dict) and isinstance(project.get("beads"), list):
            return project["beads"]
    return None


def parse_json_lines(text: str) -> list[Any]:
    if not text or not text.strip():
        return []
    return [json.loads(line) for line in text.strip().splitlines() if line.strip()]


def parse_list_output(stdout: str) -> list[Any]:
    """Parse ``bd list --json`` output. An empty array or ``null`` is no items."""
    if not stdout or not stdout.strip():
        return []
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON at line {exc.lineno} column {exc.colno}") from exc
    if payload is None:
        return []
    entries = extract_items(payload)
    if entries is None:
        raise ValueError("expected a JSON array of issues")
    return entries


def read_items_document(file_path: Path) -> LoadedDocument:
    """Read a beads data file (``.jsonl`` or JSON) from disk."""
    content = file_path.read_text(encoding="utf-8")
    if file_path.suffix == ".jsonl":
        entries = parse_json_lines(content)
        root: Any = entries
    else:
        root = json.loads(content)
        entries = extract_items(root)
        if entries is None:
            raise ValueError(f"Beads data file does not contain a beads array: {file_path.name}")

    return LoadedDocument(
        filePath=str(file_path),
        root=root,
        items=sort_items(normalize_items(entries)),
        watchPaths=[str(file_path)],
    )


def filter_items_by_query(items: list[Item], query: Optional[str]) -> list[Item]:
    """Case-insensitive substring search across the user-visible fields."""
    if not query:
        return items
    needle = query.lower()

    def _fields(item: Item) -> list[str]:
        raw = item.raw
        return [
            item.id,
            item.title,
            str(raw.get("description") or ""),
            str(raw.get("design") or ""),
            str(raw.get("acceptance_criteria") or ""),
            str(raw.get("notes") or ""),
            item.assignee or "",
            item.status or "",
            item.issueType or "",
            *item.labels,
        ]

    return [item for item in items if any(needle in field.lower() for field in _fields(item))]
