import io
import json
import sys
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from rpmlocklib import dnf_resolve


def fake_pkg(name="bash", evr="5.1.8-6.el9", arch="x86_64", reponame="baseos", digest=b"\xab\xcd"):
    return SimpleNamespace(name=name, evr=evr, arch=arch, reponame=reponame, chksum=(8, digest))


def chksum_name(chksum_type):
    return {8: "SHA256"}[chksum_type]


class TestPackageRecord(unittest.TestCase):
    def test_record(self):
        self.assertEqual(dnf_resolve.package_record(fake_pkg(), chksum_name), {
            "name": "bash",
            "evr": "5.1.8-6.el9",
            "checksum": {"algorithm": "sha256", "checksum": "abcd"},
            "repoid": "baseos",
            "arch": "x86_64",
        })

    def test_matches_locked(self):
        record = dnf_resolve.package_record(fake_pkg(), chksum_name)
        locked = dict(record)
        self.assertTrue(dnf_resolve.matches_locked(record, locked))
        del locked["arch"]
        self.assertTrue(dnf_resolve.matches_locked(record, locked))
        self.assertFalse(dnf_resolve.matches_locked(record, dict(record, arch="aarch64")))
        self.assertFalse(dnf_resolve.matches_locked(record, dict(record, evr="5.1.8-7.el9")))
        self.assertFalse(dnf_resolve.matches_locked(
            record, dict(record, checksum={"algorithm": "sha256", "checksum": "ffff"})))


class TestRepoGpgConfig(unittest.TestCase):
    def test_repo_keys_then_global_keys(self):
        base = SimpleNamespace(repos={
            "baseos": SimpleNamespace(gpgkey=["https://example.com/REPO-KEY"], gpgcheck=True),
            "extras": SimpleNamespace(gpgkey=[], gpgcheck=False),
        })
        keys = {"https://example.com/REPO-KEY": "REPO KEY", "https://example.com/GLOBAL": "GLOBAL KEY"}
        config = dnf_resolve.repo_gpg_config(
            base, {"extras", "baseos"}, ["https://example.com/GLOBAL"], fetch=lambda url, repo: [keys[url]],
        )
        self.assertEqual(config, {
            "baseos": {"gpgcheck": True, "keys": ["REPO KEY", "GLOBAL KEY"]},
            "extras": {"gpgcheck": False, "keys": ["GLOBAL KEY"]},
        })

    def test_unreachable_key(self):
        base = SimpleNamespace(repos={"baseos": SimpleNamespace(gpgkey=["https://example.com/KEY"], gpgcheck=True)})

        def fetch(url, repo):
            raise OSError("connection refused")

        with self.assertRaises(dnf_resolve.RequestFailed) as ctx:
            dnf_resolve.repo_gpg_config(base, {"baseos"}, [], fetch=fetch)
        self.assertEqual(ctx.exception.exit_status, dnf_resolve.EXIT_ENVIRONMENT)


class DnfError(Exception):
    pass


class TestFetchKey(unittest.TestCase):
    def setUp(self):
        self.retrieve = MagicMock()
        crypto = SimpleNamespace(retrieve=self.retrieve)
        exceptions = SimpleNamespace(Error=DnfError)
        dnf = SimpleNamespace(crypto=crypto, exceptions=exceptions)
        patcher = patch.dict(sys.modules, {"dnf": dnf, "dnf.crypto": crypto, "dnf.exceptions": exceptions})
        patcher.start()
        self.addCleanup(patcher.stop)
        self.repo = SimpleNamespace(id="baseos")

    def test_keys_retrieved_through_repo(self):
        self.retrieve.return_value = [
            SimpleNamespace(raw_key=b"KEY ONE"),
            SimpleNamespace(raw_key=b"KEY TWO"),
            SimpleNamespace(raw_key=b"KEY ONE"),
        ]
        self.assertEqual(dnf_resolve.fetch_key("https://example.com/KEYS", self.repo), ["KEY ONE", "KEY TWO"])
        self.retrieve.assert_called_once_with("https://example.com/KEYS", self.repo)

    def test_retrieval_failure(self):
        self.retrieve.side_effect = DnfError("Curl error (7): Couldn't connect to server")
        with self.assertRaises(dnf_resolve.RequestFailed) as ctx:
            dnf_resolve.fetch_key("https://example.com/KEYS", self.repo)
        self.assertEqual(ctx.exception.exit_status, dnf_resolve.EXIT_ENVIRONMENT)
        self.assertIn("for repository baseos", str(ctx.exception))

    def test_failure_propagates_from_repo_gpg_config(self):
        self.retrieve.side_effect = DnfError("Curl error (60): SSL peer certificate")
        base = SimpleNamespace(repos={"baseos": SimpleNamespace(id="baseos", gpgkey=["https://example.com/KEYS"],
                                                                gpgcheck=True)})
        with self.assertRaises(dnf_resolve.RequestFailed):
            dnf_resolve.repo_gpg_config(base, {"baseos"}, [])


class TestMain(unittest.TestCase):
    def run_main(self, request):
        stdout = io.StringIO()
        with patch("sys.stdin", io.StringIO(json.dumps(request))), patch("sys.stdout", stdout):
            status = dnf_resolve.main()
        return status, json.loads(stdout.getvalue())

    def test_unknown_mode(self):
        status, reply = self.run_main({"mode": "install"})
        self.assertEqual(status, dnf_resolve.EXIT_ENVIRONMENT)
        self.assertEqual(reply["error"]["kind"], "environment")

    def test_malformed_request(self):
        status, reply = self.run_main({})
        self.assertEqual(status, dnf_resolve.EXIT_ENVIRONMENT)
        self.assertIn("Malformed request", reply["error"]["message"])

    @patch("rpmlocklib.dnf_resolve.resolve")
    @patch("rpmlocklib.dnf_resolve.make_base")
    def test_unsatisfiable(self, make_base: MagicMock, resolve: MagicMock):
        resolve.side_effect = dnf_resolve.RequestFailed("unsatisfiable", "Dependency resolution failed",
                                                        ["nothing provides libfoo"])
        status, reply = self.run_main({"mode": "resolve"})
        self.assertEqual(status, dnf_resolve.EXIT_UNSATISFIABLE)
        self.assertEqual(reply["error"]["problems"], ["nothing provides libfoo"])
        make_base.return_value.close.assert_called_once()

    @patch("rpmlocklib.dnf_resolve.locate")
    @patch("rpmlocklib.dnf_resolve.make_base")
    def test_locate(self, make_base: MagicMock, locate: MagicMock):
        locate.return_value = {"urls": ["https://example.com/bash.rpm"]}
        status, reply = self.run_main({"mode": "locate", "locked": []})
        self.assertEqual(status, dnf_resolve.EXIT_OK)
        self.assertEqual(reply, {"urls": ["https://example.com/bash.rpm"]})

    @patch("rpmlocklib.dnf_resolve.make_base", side_effect=ImportError("No module named 'dnf'"))
    def test_dnf_missing(self, make_base: MagicMock):
        status, reply = self.run_main({"mode": "resolve"})
        self.assertEqual(status, dnf_resolve.EXIT_ENVIRONMENT)
        self.assertIn("dnf python bindings", reply["error"]["message"])


if __name__ == "__main__":
    unittest.main()
