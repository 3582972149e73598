"""Status policy for bd issues: normalization, transitions, ordering and labels."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Literal, Optional

BeadsStatus = Literal["open", "in_progress", "blocked", "closed"]

ALLOWED_STATUSES: tuple[str, ...] = ("open", "in_progress", "blocked", "closed")

_STATUS_PRIORITY = {
    "open": 0,
    "in_progress": 1,
    "blocked": 2,
    "closed": 3,
}

_PRIORITY_LABELS = ("", "P1", "P2", "P3", "P4")

INVALID_TARGET_REASON = "invalid target status"
ALREADY_IN_TARGET_REASON = "already in target status"


@dataclass(frozen=True)
class StatusChangeResult:
    allowed: bool
    reason: Optional[str] = None


def normalize_status(value: Any) -> Optional[BeadsStatus]:
    """Return the recognized status for ``value`` or None. Never raises."""
    if not isinstance(value, str) or not value:
        return None
    token = value.strip().lower()
    if token in _STATUS_PRIORITY:
        return token  # type: ignore[return-value]
    return None


def validate_status_change(current_status: Optional[str], target_status: str) -> StatusChangeResult:
    """Check whether an item may move from ``current_status`` to ``target_status``.

    Any recognized target is reachable from any current status, including an
    absent or unrecognized one; only invalid targets and no-op moves are
    rejected. Workflow ordering is left to callers.
    """
    target = normalize_status(target_status)
    if target is None:
        return StatusChangeResult(allowed=False, reason=INVALID_TARGET_REASON)

    current = normalize_status(current_status)
    if current is not None and current == target:
        return StatusChangeResult(allowed=False, reason=ALREADY_IN_TARGET_REASON)

    return StatusChangeResult(allowed=True)


def can_transition(current_status: Optional[str], target_status: str) -> bool:
    return validate_status_change(current_status, target_status).allowed


def validate_status_selection(value: Optional[str]) -> Optional[BeadsStatus]:
    return normalize_status(value)


def status_priority(status: Optional[str]) -> float:
    normalized = normalize_status(status)
    if normalized is None:
        return math.inf
    return _STATUS_PRIORITY[normalized]


def compare_status(a: Optional[str], b: Optional[str]) -> int:
    left = status_priority(a)
    right = status_priority(b)
    if left == right:
        return 0
    return -1 if left < right else 1


def status_sort_key(status: Optional[str]) -> float:
    """Key-function form of :func:`compare_status` for ``sorted``."""
    return status_priority(status)


def format_status_label(status: str) -> str:
    normalized = normalize_status(status)
    if normalized is None:
        return status
    return " ".join(word.capitalize() for word in normalized.split("_"))


def format_priority_label(priority: Any) -> str:
    if priority is None or isinstance(priority, bool):
        return ""
    if isinstance(priority, float) and not priority.is_integer():
        return ""
    try:
        numeric = int(priority)
    except (TypeError, ValueError):
        return ""
    if 0 <= numeric < len(_PRIORITY_LABELS):
        return _PRIORITY_LABELS[numeric]
    return ""
