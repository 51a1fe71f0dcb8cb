"""
GPG signature verification of downloaded RPMs.

Keys of a repository are imported into a private rpm database so that verification only
trusts the keys recorded in the lockfile, never the keys installed on the host.
"""
import asyncio
import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from rpmlocklib import exectools, logutil
from rpmlocklib.exceptions import SignatureError
from rpmlocklib.model import Package

LOGGER = logutil.get_logger(__name__)

ARMORED_KEY_RE = re.compile(
    r"-----BEGIN PGP PUBLIC KEY BLOCK-----.*?-----END PGP PUBLIC KEY BLOCK-----", re.DOTALL
)


def split_armored_keys(keys: Sequence[str]) -> List[str]:
    """Split key material into single armored key blocks; text without armor is kept as is"""
    blocks = []
    for key in keys:
        found = ARMORED_KEY_RE.findall(key)
        blocks.extend(found if found else [key])
    return [block.strip() + "\n" for block in blocks if block.strip()]


def signatures_ok(output: str) -> bool:
    """
    Interpret the verdict printed by `rpmkeys --checksig`.

    Current rpm prints "<path>: digests signatures OK" for a package signed by a trusted key
    and "<path>: digests OK" for an unsigned one. Older releases print the checked items
    instead, e.g. "<path>: rsa sha1 (md5) pgp md5 OK".
    """
    verdict = output.strip().splitlines()[-1].split(": ", 1)[-1] if output.strip() else ""
    if "NOT OK" in verdict or "NOKEY" in verdict or not verdict.endswith("OK"):
        return False
    if "signatures OK" in verdict:
        return True
    tokens = verdict.lower().split()
    return "pgp" in tokens or "gpg" in tokens


class KeyRing:
    """
    The trusted keys of one repository.

    The keys are imported lazily on the first verification and shared by every package of
    the repository; call cleanup() once all verifications are done.
    """

    def __init__(self, repoid: str, keys: Sequence[str]):
        self.repoid = repoid
        self.keys = split_armored_keys(keys)
        self._tmpdir: Optional[tempfile.TemporaryDirectory] = None
        self._import_error: Optional[str] = None
        self._lock = asyncio.Lock()

    async def _rpmkeys(self, dbpath: str, *args: str):
        cmd = ["rpmkeys", "--dbpath", dbpath, *args]
        return await exectools.cmd_gather_async(cmd, check=False, env={**os.environ, "LC_ALL": "C"})

    async def _dbpath(self) -> str:
        async with self._lock:
            if self._import_error is not None:
                raise RuntimeError(self._import_error)
            if self._tmpdir is not None:
                return os.path.join(self._tmpdir.name, "rpmdb")

            tmpdir = tempfile.TemporaryDirectory(prefix=f"rpmlock-keys-{self.repoid}-")
            dbpath = os.path.join(tmpdir.name, "rpmdb")
            os.mkdir(dbpath)
            try:
                for index, key in enumerate(self.keys):
                    key_path = Path(tmpdir.name, f"key-{index}.asc")
                    key_path.write_text(key)
                    rc, out, err = await self._rpmkeys(dbpath, "--import", str(key_path))
                    if rc != 0:
                        raise RuntimeError(f"unable to import key #{index}: {err.strip() or out.strip()}")
            except (OSError, RuntimeError) as e:
                tmpdir.cleanup()
                self._import_error = f"Unable to import GPG keys of repository {self.repoid}: {e}"
                raise RuntimeError(self._import_error) from e
            LOGGER.debug(f"Imported {len(self.keys)} key(s) of repository {self.repoid}")
            self._tmpdir = tmpdir
            return dbpath

    async def verify(self, package: Package, path: Path) -> None:
        """
        Verify that the RPM at path carries a valid signature by one of the repository's keys.

        :raises SignatureError: if the package is unsigned, its signature is invalid or made by
            an untrusted key, or the keys cannot be used
        """
        if not self.keys:
            raise SignatureError(
                f"Repository {self.repoid} requires signed packages but no GPG keys are configured", package
            )
        try:
            dbpath = await self._dbpath()
            rc, out, err = await self._rpmkeys(dbpath, "--checksig", str(path))
        except (OSError, RuntimeError) as e:
            raise SignatureError(f"Unable to verify signature of {package.nevra}: {e}", package) from e
        if rc != 0 or not signatures_ok(out):
            verdict = (out.strip() or err.strip()).replace(str(path), package.nevra)
            raise SignatureError(f"Signature check failed for {package.nevra} from {self.repoid}: {verdict}", package)

    def cleanup(self) -> None:
        if self._tmpdir is not None:
            self._tmpdir.cleanup()
            self._tmpdir = None
