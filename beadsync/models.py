"""Pydantic models shared by the CLI client, validators and snapshot store."""
from __future__ import annotations
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from beadsync import config


# ── Item-related models ─────────────────────────────────────────────

class DependencyLink(BaseModel):
    id: str
    type: str = "related"  # "blocks" | "parent-child" | "related"


class Item(BaseModel):
    id: str
    title: str
    status: Optional[str] = None
    priority: Optional[int] = None
    dependencies: list[DependencyLink] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    description: Optional[str] = None
    assignee: Optional[str] = None
    updatedAt: Optional[str] = None
    inProgressSince: Optional[str] = None
    issueType: Optional[str] = None
    parentId: Optional[str] = None
    blockingDepsCount: int = 0
    externalReferenceId: Optional[str] = None
    externalReferenceDescription: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def dependency_ids(self) -> list[str]:
        return [dep.id for dep in self.dependencies]


# ── Workspace-related models ────────────────────────────────────────

class WorkspaceConfig(BaseModel):
    commandPath: Optional[str] = None
    dataFile: Optional[str] = None
    policy: dict[str, int] = Field(default_factory=dict)
    workspacePaths: Optional[list[str]] = None
    worktreeId: Optional[str] = None


class WorkspaceTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    root: str
    config: WorkspaceConfig = Field(default_factory=WorkspaceConfig)


class LoadedDocument(BaseModel):
    filePath: str
    root: Any = None
    items: list[Item] = Field(default_factory=list)
    watchPaths: list[str] = Field(default_factory=list)


class Snapshot(BaseModel):
    items: list[Item] = Field(default_factory=list)
    refreshedAt: Optional[datetime] = None
    workspaceIds: list[str] = Field(default_factory=list)


class StaleInfo(BaseModel):
    hoursInProgress: float
    formattedTime: str


# ── CLI-related models ──────────────────────────────────────────────

class CliPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeoutMs: int = Field(default=config.CLI_TIMEOUT_MS, gt=0)
    retryCount: int = Field(default=config.CLI_RETRY_COUNT, ge=0)
    retryBackoffMs: int = Field(default=config.CLI_RETRY_BACKOFF_MS, ge=0)
    offlineThresholdMs: int = Field(default=config.CLI_OFFLINE_THRESHOLD_MS, ge=0)
    maxBufferBytes: Optional[int] = Field(default=config.CLI_MAX_BUFFER_BYTES, gt=0)


class CliResult(BaseModel):
    stdout: str = ""
    stderr: str = ""


class CliVersion(BaseModel):
    raw: str = ""
    major: int = 0
    minor: int = 0
    patch: int = 0
