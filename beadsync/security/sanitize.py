"""Redaction of secrets, workspace identifiers and absolute paths in CLI output."""
from __future__ import annotations

import os
import re
from typing import Iterable, Optional

_TOKEN_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"gh[pousr]_[A-Za-z0-9]{20,}"), "<token>"),
    (re.compile(r"xox[baprs]-[A-Za-z0-9-]{10,}"), "<token>"),
    (re.compile(r"bearer\s+[A-Za-z0-9._~+/-]{10,}", re.IGNORECASE), "Bearer <redacted>"),
    (re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9._-]+\.[A-Za-z0-9._-]+"), "<jwt>"),
    (
        re.compile(r"((?:api[_-]?key|token|secret|password)\s*[=:]\s*)[A-Za-z0-9._-]{6,}", re.IGNORECASE),
        r"\1<redacted>",
    ),
]
_EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_ABSOLUTE_PATH_RE = re.compile(r"""(^|[\s'"`])(?:[A-Za-z]:\\|/)[^\s'"`]+""")
_WHITESPACE_RE = re.compile(r"\s+")


def _path_variants(workspace_path: str) -> list[str]:
    normalized = os.path.abspath(workspace_path)
    variants = [normalized, normalized.replace("\\", "/"), normalized.replace("/", "\\")]
    if os.path.isabs(workspace_path) and workspace_path not in variants:
        variants.append(workspace_path.rstrip("/\\") or workspace_path)
    # Longest first so a nested variant never leaves a partial prefix behind.
    return sorted({v for v in variants if v}, key=len, reverse=True)


def _redact_workspace_paths(text: str, workspace_paths: Iterable[str]) -> str:
    cleaned = text
    for workspace_path in workspace_paths:
        if not workspace_path:
            continue
        for candidate in _path_variants(workspace_path):
            cleaned = re.sub(re.escape(candidate), "<workspace>", cleaned, flags=re.IGNORECASE)
    return cleaned


def redact_log_content(
    text: str,
    workspace_paths: Optional[Iterable[str]] = None,
    worktree_id: Optional[str] = None,
) -> str:
    """Strip tokens, emails, workspace/worktree identifiers and absolute paths."""
    if not text:
        return ""

    cleaned = text
    for pattern, replacement in _TOKEN_PATTERNS:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = _EMAIL_RE.sub("<email>", cleaned)

    if workspace_paths:
        cleaned = _redact_workspace_paths(cleaned, workspace_paths)

    if worktree_id:
        cleaned = re.sub(re.escape(worktree_id), "<worktree>", cleaned, flags=re.IGNORECASE)

    return _ABSOLUTE_PATH_RE.sub(lambda m: f"{m.group(1)}<path>", cleaned)


def sanitize_cli_output(
    raw: str,
    workspace_paths: Optional[Iterable[str]] = None,
    worktree_id: Optional[str] = None,
) -> str:
    if not raw:
        return raw
    redacted = redact_log_content(raw, workspace_paths=workspace_paths, worktree_id=worktree_id)
    return _WHITESPACE_RE.sub(" ", redacted).strip()


def sanitize_error_message(
    error: object,
    workspace_paths: Optional[Iterable[str]] = None,
    worktree_id: Optional[str] = None,
) -> str:
    raw = str(error) if error is not None else ""
    return sanitize_cli_output(raw, workspace_paths=workspace_paths, worktree_id=worktree_id)
