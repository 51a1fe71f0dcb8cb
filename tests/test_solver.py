import json
import os
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from rpmlocklib.config import Config, Contents, RepositoryDefinition
from rpmlocklib.exceptions import ResolverEnvironmentError, UnsatisfiableError
from rpmlocklib.model import Algorithm, Checksum, Package
from rpmlocklib.solver import RESOLVER_SCRIPT, DnfSolver


class TestDnfSolver(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = Config(contents=Contents(
            repositories=["baseos", RepositoryDefinition(id="extras", url="https://example.com/extras/")],
            packages=["bash", "app.rpm"],
            gpgkeys=["https://example.com/KEY"],
        ), base_dir=Path("/work"))
        self.solver = DnfSolver(self.config)
        self.repo_files = []

    def reply(self, rc, body, stderr=""):
        def _run(cmd, check, input):
            request = json.loads(input)
            self.requests.append(request)
            reposdir = request["reposdirs"][0]
            self.repo_files.append(sorted(os.listdir(reposdir)))
            return rc, json.dumps(body) if not isinstance(body, str) else body, stderr
        self.requests = []
        return _run

    @patch("rpmlocklib.solver.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_resolve_request(self, cmd_gather_async: AsyncMock):
        cmd_gather_async.side_effect = self.reply(0, {"packages": [], "repo_gpg_config": {}})
        reply = await self.solver.resolve([Path("/work/app.rpm")])
        self.assertEqual(reply, {"packages": [], "repo_gpg_config": {}})

        cmd = cmd_gather_async.call_args.args[0]
        self.assertEqual(cmd, ["python3", str(RESOLVER_SCRIPT)])
        request = self.requests[0]
        self.assertEqual(request["mode"], "resolve")
        self.assertEqual(request["repositories"], ["baseos", "extras"])
        self.assertEqual(request["packages"], ["bash"])
        self.assertEqual(request["local_rpms"], ["/work/app.rpm"])
        self.assertEqual(request["gpgkeys"], ["https://example.com/KEY"])
        self.assertEqual(request["reposdirs"][1:], ["/etc/yum.repos.d"])
        self.assertFalse(request["weak_deps"])
        self.assertEqual(self.repo_files, [["rpmlock.repo"]])

    @patch("rpmlocklib.solver.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_unsatisfiable(self, cmd_gather_async: AsyncMock):
        cmd_gather_async.side_effect = self.reply(2, {"error": {
            "kind": "unsatisfiable",
            "message": "No package matches the requested specs",
            "problems": ["No match for argument: nosuchpkg"],
        }})
        with self.assertRaises(UnsatisfiableError) as ctx:
            await self.solver.resolve([])
        self.assertEqual(ctx.exception.problems, ["No match for argument: nosuchpkg"])
        self.assertIn("nosuchpkg", str(ctx.exception))

    @patch("rpmlocklib.solver.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_environment_failure(self, cmd_gather_async: AsyncMock):
        cmd_gather_async.side_effect = self.reply(1, {"error": {"kind": "environment", "message": "Unknown repositories: baseos"}})
        with self.assertRaisesRegex(ResolverEnvironmentError, "Unknown repositories"):
            await self.solver.resolve([])

    @patch("rpmlocklib.solver.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_crash_without_reply(self, cmd_gather_async: AsyncMock):
        cmd_gather_async.side_effect = self.reply(1, "", stderr="Traceback (most recent call last): ...")
        with self.assertRaises(ResolverEnvironmentError) as ctx:
            await self.solver.resolve([])
        self.assertIn("Traceback", ctx.exception.stderr)

    @patch("rpmlocklib.solver.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_interpreter_missing(self, cmd_gather_async: AsyncMock):
        cmd_gather_async.side_effect = FileNotFoundError("python3")
        with self.assertRaisesRegex(ResolverEnvironmentError, "Unable to start resolver"):
            await self.solver.resolve([])

    @patch("rpmlocklib.solver.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_malformed_reply(self, cmd_gather_async: AsyncMock):
        cmd_gather_async.side_effect = self.reply(0, {"packages": {}})
        with self.assertRaises(ResolverEnvironmentError):
            await self.solver.resolve([])

    @patch("rpmlocklib.solver.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_locate(self, cmd_gather_async: AsyncMock):
        package = Package("bash", "5.1-1", Checksum(Algorithm.SHA256, "abc"), "baseos", "x86_64")
        cmd_gather_async.side_effect = self.reply(0, {"urls": ["https://example.com/bash.rpm"]})
        urls = await self.solver.locate([package])
        self.assertEqual(urls, ["https://example.com/bash.rpm"])
        self.assertEqual(self.requests[0]["mode"], "locate")
        self.assertEqual(self.requests[0]["locked"], [package.to_dict()])

    @patch("rpmlocklib.solver.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_locate_count_mismatch(self, cmd_gather_async: AsyncMock):
        package = Package("bash", "5.1-1", Checksum(Algorithm.SHA256, "abc"), "baseos", "x86_64")
        cmd_gather_async.side_effect = self.reply(0, {"urls": []})
        with self.assertRaises(ResolverEnvironmentError):
            await self.solver.locate([package])


if __name__ == "__main__":
    unittest.main()
