"""Default workspace loader: ``bd list --json`` with a data-file fallback."""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from beadsync import config
from beadsync.cli_client import BdCliClient, BdCliError, ProcessExecutor
from beadsync.models import LoadedDocument, WorkspaceTarget
from beadsync.parsers.items import read_items_document, sort_items

logger = logging.getLogger("beadsync.loader")


def resolve_data_file_path(data_file: Optional[str], project_root: Optional[str]) -> Optional[Path]:
    if not data_file or not data_file.strip():
        return None
    path = Path(data_file)
    if path.is_absolute():
        return path
    if not project_root:
        return None
    return Path(project_root) / path


def build_client(target: WorkspaceTarget, executor: Optional[ProcessExecutor] = None) -> BdCliClient:
    """Create a client scoped to one workspace; errors are scrubbed of its paths."""
    workspace_config = target.config
    return BdCliClient(
        workspace_config.commandPath,
        cwd=target.root,
        policy=workspace_config.policy or None,
        workspace_paths=workspace_config.workspacePaths or [target.root],
        worktree_id=workspace_config.worktreeId,
        executor=executor,
    )


async def load_from_cli(target: WorkspaceTarget, client: Optional[BdCliClient] = None) -> LoadedDocument:
    bd = client or build_client(target)
    items = await bd.list_items()
    beads_dir = os.path.join(target.root, config.BEADS_DIR_NAME)
    return LoadedDocument(
        filePath=beads_dir,
        root=[item.raw for item in items],
        items=sort_items(items),
        watchPaths=[beads_dir],
    )


async def load_from_file(target: WorkspaceTarget) -> LoadedDocument:
    data_file = resolve_data_file_path(target.config.dataFile or config.DATA_FILE, target.root)
    if data_file is None:
        raise ValueError("Unable to resolve beads data file. Provide an absolute path or a workspace root.")
    return await asyncio.to_thread(read_items_document, data_file)


async def load_workspace(target: WorkspaceTarget, client: Optional[BdCliClient] = None) -> LoadedDocument:
    """Load one workspace through bd, falling back to its data file.

    When both fail the CLI error is raised, since it carries the classified
    ``kind`` callers branch on.
    """
    if not target.root:
        raise ValueError("Workspace root is required to load beads.")

    try:
        return await load_from_cli(target, client)
    except BdCliError as exc:
        logger.warning(
            "bd list failed for workspace %s (%s), falling back to data file",
            target.id, exc.kind.value,
        )
        try:
            return await load_from_file(target)
        except (OSError, ValueError) as file_exc:
            logger.warning("Data file fallback failed for workspace %s: %s", target.id, type(file_exc).__name__)
            raise exc from file_exc
