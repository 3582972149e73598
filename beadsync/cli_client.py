"""Async client for the bd command-line issue tracker.

Every invocation goes through :func:`exec_cli_with_policy`, which validates
arguments, bounds each attempt with a timeout, retries transient failures,
escalates sustained timeouts to ``offline`` and scrubs workspace paths out of
every surfaced error message.
"""
from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import re
import subprocess
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Protocol, Sequence, Union

from beadsync import config
from beadsync.dependencies import normalize_dependency_type, sanitize_dependency_id
from beadsync.models import CliPolicy, CliResult, CliVersion, Item
from beadsync.observability import record_cli_invocation, start_span
from beadsync.parsers.items import normalize_items, parse_list_output
from beadsync.security.sanitize import sanitize_cli_output
from beadsync.status import validate_status_change

logger = logging.getLogger("beadsync.cli")

DEFAULT_CLI_POLICY = CliPolicy()

_NO_DAEMON_FLAG = "--no-daemon"
_NOT_FOUND_RE = re.compile(r"not\s+found", re.IGNORECASE)
_CYCLE_RE = re.compile(r"cycle", re.IGNORECASE)
_TIMED_OUT_RE = re.compile(r"timed out", re.IGNORECASE)
_CREATED_ISSUE_RE = re.compile(r"Created issue:\s*([A-Za-z0-9._-]+)")
_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")
_TRANSIENT_ERRNOS = {errno.ECONNRESET, errno.EPIPE}
_TRANSIENT_CODES = {"ECONNRESET", "EPIPE", "EAI_AGAIN"}


class BdCliErrorKind(str, Enum):
    INVALID_ARGUMENT = "invalid_argument"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    OFFLINE = "offline"
    FATAL = "fatal"


_DEFAULT_MESSAGES = {
    BdCliErrorKind.TIMEOUT: "bd command timed out",
    BdCliErrorKind.OFFLINE: "bd command exceeded offline detection threshold",
}


class BdCliError(Exception):
    """A classified bd failure. ``message`` is always sanitized."""

    def __init__(
        self,
        message: str,
        kind: BdCliErrorKind,
        *,
        reason: Optional[str] = None,
        attempts: int = 0,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.reason = reason
        self.attempts = attempts
        self.stdout = stdout
        self.stderr = stderr


class ProcessFailedError(Exception):
    """Raised by executors when the process ran but exited non-zero."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class TransientProcessError(Exception):
    """Raised by executors for failures worth retrying (resets, broken pipes)."""


class ProcessExecutor(Protocol):
    async def execute(
        self,
        command: str,
        args: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CliResult:
        ...


class SubprocessExecutor:
    """Runs bd through ``asyncio.create_subprocess_exec``; never through a shell."""

    async def execute(
        self,
        command: str,
        args: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CliResult:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        try:
            stdout_bytes, stderr_bytes = await proc.communicate()
        except asyncio.CancelledError:
            # Timeout or shutdown: do not leave the child running.
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise ProcessFailedError(
                f"Command failed with exit code {proc.returncode}: {command} {' '.join(args)}",
                returncode=proc.returncode,
                stdout=stdout,
                stderr=stderr,
            )
        return CliResult(stdout=stdout, stderr=stderr)


def merge_cli_policy(
    overrides: Union[CliPolicy, Mapping[str, Any], None] = None,
    defaults: CliPolicy = DEFAULT_CLI_POLICY,
) -> CliPolicy:
    """Return a new policy with ``overrides`` applied; ``defaults`` is never mutated."""
    if overrides is None:
        return defaults
    if isinstance(overrides, CliPolicy):
        return overrides
    return CliPolicy.model_validate({**defaults.model_dump(), **dict(overrides)})


def build_safe_bd_args(raw_args: Sequence[str], *, no_daemon: bool = True) -> list[str]:
    """Validate bd arguments before any process is spawned."""
    if isinstance(raw_args, (str, bytes)) or not isinstance(raw_args, (list, tuple)):
        raise BdCliError("bd arguments must be a list", BdCliErrorKind.INVALID_ARGUMENT)

    args: list[str] = []
    for index, arg in enumerate(raw_args):
        if not isinstance(arg, str):
            raise BdCliError(f"bd argument {index} must be a string", BdCliErrorKind.INVALID_ARGUMENT)
        if not arg.strip():
            raise BdCliError("bd arguments cannot be empty", BdCliErrorKind.INVALID_ARGUMENT)
        if "\r" in arg or "\n" in arg:
            raise BdCliError("bd arguments cannot contain newlines", BdCliErrorKind.INVALID_ARGUMENT)
        args.append(arg)

    if no_daemon and _NO_DAEMON_FLAG not in args:
        return [_NO_DAEMON_FLAG, *args]
    return args


def collect_cli_error_output(error: BaseException) -> str:
    parts = [str(error)]
    stderr = getattr(error, "stderr", None)
    if isinstance(stderr, str):
        parts.append(stderr)
    return " ".join(p.strip() for p in parts if p and p.strip())


def format_cli_error(
    prefix: str,
    error: BaseException,
    workspace_paths: Iterable[str] = (),
    worktree_id: Optional[str] = None,
) -> str:
    combined = collect_cli_error_output(error) or repr(error)
    message = sanitize_cli_output(combined, workspace_paths=list(workspace_paths), worktree_id=worktree_id)
    return f"{prefix}: {message}" if message else prefix


def _is_timeout_error(error: BaseException) -> bool:
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, subprocess.TimeoutExpired)):
        return True
    # A process that exited carries its argv in the message; never read it.
    if isinstance(error, ProcessFailedError):
        return False
    return bool(_TIMED_OUT_RE.search(str(error)))


def _is_transient_error(error: BaseException) -> bool:
    if isinstance(error, ProcessFailedError):
        return False
    if isinstance(error, (TransientProcessError, ConnectionResetError, BrokenPipeError)):
        return True
    if getattr(error, "errno", None) in _TRANSIENT_ERRNOS:
        return True
    return getattr(error, "code", None) in _TRANSIENT_CODES


def _command_label(args: Sequence[str]) -> str:
    for arg in args:
        if not arg.startswith("-"):
            return arg
    return args[-1] if args else "unknown"


def _classified_error(
    error: BaseException,
    kind: BdCliErrorKind,
    *,
    attempts: int,
    workspace_paths: Sequence[str],
    worktree_id: Optional[str],
) -> BdCliError:
    def _scrub(text: Optional[str]) -> Optional[str]:
        if not isinstance(text, str):
            return None
        return sanitize_cli_output(text, workspace_paths=workspace_paths, worktree_id=worktree_id)

    message = _scrub(collect_cli_error_output(error)) or ""
    if not message:
        message = _DEFAULT_MESSAGES.get(kind, "bd command failed")

    reason = None
    if kind == BdCliErrorKind.FATAL:
        if _CYCLE_RE.search(message):
            reason = "cycle"
        elif _NOT_FOUND_RE.search(message):
            reason = "not_found"

    return BdCliError(
        message,
        kind,
        reason=reason,
        attempts=attempts,
        stdout=_scrub(getattr(error, "stdout", None)),
        stderr=_scrub(getattr(error, "stderr", None)),
    )


async def exec_cli_with_policy(
    command_path: str,
    args: Sequence[str],
    *,
    policy: CliPolicy = DEFAULT_CLI_POLICY,
    executor: Optional[ProcessExecutor] = None,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    workspace_paths: Sequence[str] = (),
    worktree_id: Optional[str] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> CliResult:
    """Run one bd invocation under ``policy``.

    Timeouts and transient errors are retried up to ``policy.retryCount`` more
    times with ``policy.retryBackoffMs`` between attempts. A timeout seen once
    the cumulative elapsed time exceeds ``policy.offlineThresholdMs`` is raised
    as ``offline``. Any other failure is ``fatal`` and is not retried.
    """
    runner = executor or SubprocessExecutor()
    command = _command_label(args)
    started = monotonic()
    attempt = 0

    with start_span("bd.run", {"bd.command": command}):
        while True:
            attempt += 1
            try:
                result = await asyncio.wait_for(
                    runner.execute(command_path, args, cwd=cwd, env=env),
                    timeout=policy.timeoutMs / 1000,
                )
            except Exception as exc:
                elapsed_ms = (monotonic() - started) * 1000
                timed_out = _is_timeout_error(exc)
                retriable = timed_out or _is_transient_error(exc)

                kind: Optional[BdCliErrorKind] = None
                if isinstance(exc, ProcessFailedError):
                    kind = BdCliErrorKind.FATAL
                elif timed_out and elapsed_ms > policy.offlineThresholdMs:
                    kind = BdCliErrorKind.OFFLINE
                elif not retriable:
                    kind = BdCliErrorKind.FATAL
                elif attempt > policy.retryCount:
                    kind = BdCliErrorKind.TIMEOUT if timed_out else BdCliErrorKind.TRANSIENT

                if kind is not None:
                    error = _classified_error(
                        exc,
                        kind,
                        attempts=attempt,
                        workspace_paths=workspace_paths,
                        worktree_id=worktree_id,
                    )
                    logger.warning(
                        "bd %s failed after %d attempt(s) (%s): %s",
                        command, attempt, kind.value, error.message,
                    )
                    record_cli_invocation(command, kind.value, elapsed_ms, attempt)
                    raise error from exc

                logger.info(
                    "bd %s attempt %d/%d failed (%s), retrying",
                    command, attempt, policy.retryCount + 1,
                    "timeout" if timed_out else "transient",
                )
                if policy.retryBackoffMs > 0:
                    await sleep(policy.retryBackoffMs / 1000)
                continue

            elapsed_ms = (monotonic() - started) * 1000
            output_size = len(result.stdout.encode("utf-8")) + len(result.stderr.encode("utf-8"))
            if policy.maxBufferBytes is not None and output_size > policy.maxBufferBytes:
                record_cli_invocation(command, BdCliErrorKind.FATAL.value, elapsed_ms, attempt)
                raise BdCliError(
                    f"bd {command} output exceeded {policy.maxBufferBytes} bytes",
                    BdCliErrorKind.FATAL,
                    attempts=attempt,
                )
            record_cli_invocation(command, "success", elapsed_ms, attempt)
            return result


class BdCliClient:
    """Thin argument-shaping wrappers over :meth:`run`."""

    def __init__(
        self,
        command_path: Optional[str] = None,
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        policy: Union[CliPolicy, Mapping[str, Any], None] = None,
        workspace_paths: Optional[Sequence[str]] = None,
        worktree_id: Optional[str] = None,
        executor: Optional[ProcessExecutor] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.command_path = command_path or config.BD_COMMAND
        self.cwd = cwd
        self.env = env
        self.policy = merge_cli_policy(policy)
        self.workspace_paths: list[str] = list(workspace_paths if workspace_paths is not None else ([cwd] if cwd else []))
        self.worktree_id = worktree_id
        self.executor: ProcessExecutor = executor or SubprocessExecutor()
        self._sleep = sleep
        self._monotonic = monotonic

    async def run(self, args: Sequence[str], *, no_daemon: bool = True) -> CliResult:
        safe_args = build_safe_bd_args(args, no_daemon=no_daemon)
        return await exec_cli_with_policy(
            self.command_path,
            safe_args,
            policy=self.policy,
            executor=self.executor,
            cwd=self.cwd,
            env=self.env,
            workspace_paths=self.workspace_paths,
            worktree_id=self.worktree_id,
            sleep=self._sleep,
            monotonic=self._monotonic,
        )

    def _fatal(self, message: str) -> BdCliError:
        scrubbed = sanitize_cli_output(message, workspace_paths=self.workspace_paths, worktree_id=self.worktree_id)
        return BdCliError(scrubbed, BdCliErrorKind.FATAL)

    async def export(self) -> CliResult:
        return await self.run(["export"])

    async def list(self, additional_args: Sequence[str] = ()) -> CliResult:
        return await self.run(["list", *additional_args])

    async def list_items(self, additional_args: Sequence[str] = ()) -> list[Item]:
        """Run ``list --json`` and normalize the result; ``null`` means no items."""
        args = list(additional_args)
        if "--json" not in args:
            args.insert(0, "--json")
        result = await self.list(args)
        try:
            entries = parse_list_output(result.stdout)
        except ValueError as exc:
            raise self._fatal(f"Could not parse bd list output: {exc}") from exc
        return normalize_items(entries)

    async def show(self, issue_id: str) -> CliResult:
        return await self.run(["show", issue_id, "--json"])

    async def create(self, title: str, priority: Optional[int] = None, additional_args: Sequence[str] = ()) -> str:
        """Create an issue and return the id bd reports for it."""
        args = ["create", title]
        if priority is not None:
            args.extend(["--priority", str(priority)])
        args.extend(additional_args)
        result = await self.run(args)
        match = _CREATED_ISSUE_RE.search(result.stdout) or _CREATED_ISSUE_RE.search(result.stderr)
        if not match:
            raise self._fatal(f"bd create did not report an issue id: {result.stdout.strip()}")
        return match.group(1)

    async def update(self, issue_id: str, update_args: Sequence[str]) -> CliResult:
        return await self.run(["update", issue_id, *update_args])

    async def update_status(self, issue_id: str, status: str, current_status: Optional[str] = None) -> CliResult:
        check = validate_status_change(current_status, status)
        if not check.allowed:
            raise BdCliError(
                f"Cannot change status to {status!r}: {check.reason}",
                BdCliErrorKind.INVALID_ARGUMENT,
                reason=check.reason,
            )
        return await self.update(issue_id, ["--status", status.strip().lower()])

    async def label(self, action: str, issue_id: str, label: str) -> CliResult:
        if action not in ("add", "remove"):
            raise BdCliError(f"Unknown label action: {action!r}", BdCliErrorKind.INVALID_ARGUMENT)
        return await self.run(["label", action, issue_id, label])

    async def close(self, issue_id: str, reason: Optional[str] = None) -> CliResult:
        args = ["close", issue_id]
        if reason:
            args.extend(["--reason", reason])
        return await self.run(args)

    async def add_dependency(self, source_id: str, target_id: str, dep_type: Optional[str] = None) -> CliResult:
        args = ["dep", "add", *self._dependency_ids(source_id, target_id)]
        if dep_type:
            args.extend(["--type", normalize_dependency_type(dep_type)])
        return await self.run(args)

    async def remove_dependency(self, source_id: str, target_id: str) -> CliResult:
        return await self.run(["dep", "remove", *self._dependency_ids(source_id, target_id)])

    async def stats(self) -> CliResult:
        return await self.run(["stats"])

    async def version(self) -> CliVersion:
        result = await self.run(["--version"], no_daemon=False)
        return parse_cli_version(result.stdout)

    @staticmethod
    def _dependency_ids(source_id: str, target_id: str) -> list[str]:
        safe_source = sanitize_dependency_id(source_id)
        safe_target = sanitize_dependency_id(target_id)
        if not safe_source or not safe_target:
            raise BdCliError("Dependency ids are invalid", BdCliErrorKind.INVALID_ARGUMENT)
        return [safe_source, safe_target]


# ── Version helpers ─────────────────────────────────────────────────

def parse_cli_version(raw: Optional[str]) -> CliVersion:
    trimmed = (raw or "").strip()
    match = _VERSION_RE.search(trimmed)
    if not match:
        return CliVersion(raw=trimmed)
    major, minor, patch = (int(part) for part in match.groups())
    return CliVersion(raw=trimmed, major=major, minor=minor, patch=patch)


def format_cli_version(version: CliVersion) -> str:
    return f"{version.major}.{version.minor}.{version.patch}"


def is_cli_version_at_least(version: Union[str, CliVersion], minimum: Union[str, CliVersion]) -> bool:
    v = parse_cli_version(version) if isinstance(version, str) else version
    m = parse_cli_version(minimum) if isinstance(minimum, str) else minimum
    return (v.major, v.minor, v.patch) >= (m.major, m.minor, m.patch)


async def check_dependency_editing_supported(
    client: BdCliClient,
    min_version: str = config.MIN_DEPENDENCY_VERSION,
) -> Optional[str]:
    """Return a warning when the installed bd is too old for dependency editing."""
    try:
        detected = await client.version()
    except BdCliError as exc:
        logger.warning("Could not determine bd version: %s", exc.message)
        return "Could not determine bd version; dependency editing may be unsupported."

    if not is_cli_version_at_least(detected, min_version):
        return (
            f"Dependency editing requires bd >= {min_version} "
            f"(found {detected.raw or 'unknown'}). Update bd before enabling."
        )
    return None
