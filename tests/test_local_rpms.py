import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from rpmlocklib import local_rpms
from rpmlocklib.exceptions import LocalRpmError
from rpmlocklib.model import LocalPackage

QUERY_OUTPUT = """app
/bin/sh
glibc >= 2.34
libc.so.6()(64bit)
rpmlib(CompressedFileNames) <= 3.0.4-1
rpmlib(PayloadFilesHavePrefix) <= 4.0-1
glibc >= 2.34
"""


class TestParseQueryOutput(unittest.TestCase):
    def test_drops_rpmlib_and_duplicates(self):
        package = local_rpms.parse_query_output(QUERY_OUTPUT)
        self.assertEqual(package, LocalPackage("app", ("/bin/sh", "glibc >= 2.34", "libc.so.6()(64bit)")))

    def test_no_requirements(self):
        self.assertEqual(local_rpms.parse_query_output("app\n"), LocalPackage("app", ()))

    def test_empty_output(self):
        with self.assertRaises(ValueError):
            local_rpms.parse_query_output("")


class TestReadLocalPackage(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.rpm = Path(self.tmpdir.name, "app-1.0-1.x86_64.rpm")
        self.rpm.write_bytes(b"\xed\xab\xee\xdb")

    @patch("rpmlocklib.local_rpms.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_read(self, cmd_gather_async: AsyncMock):
        cmd_gather_async.return_value = (0, QUERY_OUTPUT, "")
        package = await local_rpms.read_local_package(self.rpm)
        self.assertEqual(package.name, "app")
        cmd = cmd_gather_async.call_args.args[0]
        self.assertEqual(cmd[:2], ["rpm", "-qp"])
        self.assertEqual(cmd[-1], str(self.rpm))
        self.assertEqual(cmd_gather_async.call_args.kwargs["env"]["LC_ALL"], "C")

    @patch("rpmlocklib.local_rpms.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_missing_file(self, cmd_gather_async: AsyncMock):
        with self.assertRaises(LocalRpmError) as ctx:
            await local_rpms.read_local_package(Path(self.tmpdir.name, "missing.rpm"))
        self.assertTrue(ctx.exception.path.endswith("missing.rpm"))
        cmd_gather_async.assert_not_awaited()

    @patch("rpmlocklib.local_rpms.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_query_failure(self, cmd_gather_async: AsyncMock):
        cmd_gather_async.return_value = (1, "", "error: not an rpm package")
        with self.assertRaisesRegex(LocalRpmError, "not an rpm package"):
            await local_rpms.read_local_package(self.rpm)

    @patch("rpmlocklib.local_rpms.exectools.cmd_gather_async", new_callable=AsyncMock)
    async def test_rpm_not_installed(self, cmd_gather_async: AsyncMock):
        cmd_gather_async.side_effect = FileNotFoundError("rpm")
        with self.assertRaises(LocalRpmError):
            await local_rpms.read_local_package(self.rpm)

    @patch("rpmlocklib.local_rpms.read_local_package", new_callable=AsyncMock)
    async def test_read_many(self, read_local_package: AsyncMock):
        read_local_package.side_effect = [
            LocalPackage("zeta", ("glibc",)),
            LocalPackage("alpha", ("bash", "glibc")),
        ]
        packages = await local_rpms.read_local_packages(["z.rpm", "a.rpm"])
        self.assertEqual([p.name for p in packages], ["alpha", "zeta"])

        read_local_package.side_effect = [
            LocalPackage("zeta", ("glibc",)),
            LocalPackage("alpha", ("bash", "glibc")),
        ]
        requires = await local_rpms.read_local_rpm_requires(["z.rpm", "a.rpm"])
        self.assertEqual(requires, frozenset({"glibc", "bash"}))

    async def test_read_none(self):
        self.assertEqual(await local_rpms.read_local_packages([]), [])


if __name__ == "__main__":
    unittest.main()
