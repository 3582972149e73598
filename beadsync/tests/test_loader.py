import json
import os
import tempfile
import unittest
from pathlib import Path

from beadsync.cli_client import BdCliError, BdCliErrorKind, ProcessFailedError
from beadsync.models import CliResult, WorkspaceConfig, WorkspaceTarget
from beadsync.store.loader import build_client, load_workspace, resolve_data_file_path


class StaticExecutor:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = 0

    async def execute(self, command, args, *, cwd=None, env=None):
        self.calls += 1
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return CliResult(stdout=self.outcome)


def _target(root: str, **config) -> WorkspaceTarget:
    config.setdefault("policy", {"retryCount": 0, "retryBackoffMs": 0})
    return WorkspaceTarget(id="ws", root=root, config=WorkspaceConfig(**config))


class ResolveDataFilePathTests(unittest.TestCase):
    def test_resolves_relative_to_root(self) -> None:
        self.assertEqual(resolve_data_file_path(".beads/issues.jsonl", "/repo"), Path("/repo/.beads/issues.jsonl"))

    def test_absolute_paths_are_kept(self) -> None:
        self.assertEqual(resolve_data_file_path("/data/issues.jsonl", None), Path("/data/issues.jsonl"))

    def test_unresolvable_inputs(self) -> None:
        self.assertIsNone(resolve_data_file_path("", "/repo"))
        self.assertIsNone(resolve_data_file_path("issues.jsonl", None))


class LoadWorkspaceTests(unittest.IsolatedAsyncioTestCase):
    async def test_loads_through_bd_and_watches_beads_dir(self) -> None:
        target = _target("/repo")
        executor = StaticExecutor('[{"id": "bd-10", "title": "Ten"}, {"id": "bd-3", "title": "Three"}]')
        document = await load_workspace(target, build_client(target, executor))
        self.assertEqual([item.id for item in document.items], ["bd-3", "bd-10"])
        self.assertEqual(document.watchPaths, [os.path.join("/repo", ".beads")])

    async def test_falls_back_to_data_file_when_bd_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            beads_dir = Path(tmp) / ".beads"
            beads_dir.mkdir()
            data_file = beads_dir / "issues.jsonl"
            data_file.write_text(json.dumps({"id": "bd-1", "title": "From file", "status": "open"}) + "\n", encoding="utf-8")

            target = _target(tmp)
            executor = StaticExecutor(ProcessFailedError("bd: command not found"))
            document = await load_workspace(target, build_client(target, executor))

        self.assertEqual(executor.calls, 1)
        self.assertEqual([item.title for item in document.items], ["From file"])
        self.assertEqual(document.watchPaths, [str(data_file)])

    async def test_raises_cli_error_when_fallback_also_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = _target(tmp)
            executor = StaticExecutor(ProcessFailedError("exec failed in " + tmp))
            with self.assertRaises(BdCliError) as ctx:
                await load_workspace(target, build_client(target, executor))
        self.assertEqual(ctx.exception.kind, BdCliErrorKind.FATAL)
        self.assertNotIn(tmp, ctx.exception.message)

    async def test_custom_data_file_is_used_for_fallback(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            data_file = Path(tmp) / "export.json"
            data_file.write_text(json.dumps({"issues": [{"id": "e-1", "title": "Exported"}]}), encoding="utf-8")
            target = _target(tmp, dataFile=str(data_file))
            executor = StaticExecutor(ProcessFailedError("broken"))
            document = await load_workspace(target, build_client(target, executor))
        self.assertEqual([item.id for item in document.items], ["e-1"])

    async def test_requires_workspace_root(self) -> None:
        with self.assertRaises(ValueError):
            await load_workspace(WorkspaceTarget(id="empty", root=""))


class BuildClientTests(unittest.TestCase):
    def test_client_uses_workspace_config(self) -> None:
        target = _target(
            "/repo",
            commandPath="/opt/bd",
            policy={"timeoutMs": 500, "retryCount": 2},
            worktreeId="wt-1",
        )
        client = build_client(target)
        self.assertEqual(client.command_path, "/opt/bd")
        self.assertEqual(client.cwd, "/repo")
        self.assertEqual(client.policy.timeoutMs, 500)
        self.assertEqual(client.policy.retryCount, 2)
        self.assertEqual(client.workspace_paths, ["/repo"])
        self.assertEqual(client.worktree_id, "wt-1")


if __name__ == "__main__":
    unittest.main()
