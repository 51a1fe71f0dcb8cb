import asyncio
import os
from dataclasses import dataclass
from logging import Logger
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import aiohttp
from opentelemetry import trace
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from rpmlocklib import constants, logutil
from rpmlocklib.config import Config
from rpmlocklib.exceptions import (ChecksumMismatchError, DownloadError, PackageLocateError, SignatureError,
                                   TransientFetchError)
from rpmlocklib.lockfile import Lockfile
from rpmlocklib.model import Algorithm, LocalPackage, Package
from rpmlocklib.signature import KeyRing
from rpmlocklib.solver import DnfSolver
from rpmlocklib.telemetry import start_as_current_span_async

TRACER = trace.get_tracer(__name__)

# Whole-request timeout for a single package fetch
FETCH_TIMEOUT = aiohttp.ClientTimeout(total=30 * 60, sock_connect=60, sock_read=120)


def artifact_filename(package: Package) -> str:
    """
    File name of a downloaded package: <nevra>.rpm. Packages locked without an architecture
    can share name and evr across repositories, so their name also carries the repository id
    and a digest prefix.
    """
    if package.arch:
        return f"{package.nevra}.rpm"
    return f"{package.nevra}.{package.repoid}.{package.checksum.checksum[:16]}.rpm"


@dataclass(frozen=True)
class VerifiedArtifact:
    """A package file that passed checksum and, where required, signature verification"""

    package: Package
    path: Path


@dataclass(frozen=True)
class DownloadResult:
    """
    Outcome of a successful download.

    Attributes:
        artifacts: Verified package files, in the natural order of the lockfile's packages.
        local_packages: The lockfile's local packages, passed through for the image builder.
    """

    artifacts: Tuple[VerifiedArtifact, ...]
    local_packages: Tuple[LocalPackage, ...]


class Downloader:
    """
    Fetches every locked package into dest_dir and verifies it.

    A package file only appears under its final name (see artifact_filename) once its digest
    matches the lockfile and its signature has been checked. While a fetch is in progress the
    content is written to the same name with a .part suffix, which is removed on any failure
    or cancellation.
    """

    def __init__(
        self,
        config: Config,
        dest_dir: Union[str, Path],
        solver: Optional[DnfSolver] = None,
        concurrency: Optional[int] = None,
        retries: Optional[int] = None,
        retry_wait=None,
        logger: Optional[Logger] = None,
    ):
        self.config = config
        self.dest_dir = Path(dest_dir)
        self.logger = logger or logutil.get_logger(__name__)
        self.solver = solver or DnfSolver(config, logger=self.logger)
        self.concurrency = concurrency or config.download.concurrency
        self.retries = retries or config.download.retries
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)

    @start_as_current_span_async(TRACER, "downloader.download")
    async def download(self, lockfile: Lockfile) -> DownloadResult:
        """
        Download and verify every remote package of the lockfile.

        All packages are attempted even when some of them fail.

        :raises PackageLocateError: if locked packages are no longer offered by their repositories
        :raises ResolverEnvironmentError: if package locations could not be looked up
        :raises DownloadError: listing every package that could not be fetched or verified
        """
        packages = list(lockfile.iter_packages())
        trace.get_current_span().set_attribute("downloader.package_count", len(packages))
        if not packages:
            return DownloadResult(artifacts=(), local_packages=lockfile.local_packages)

        urls = await self.solver.locate(packages)
        missing = [pkg for pkg, url in zip(packages, urls) if not url]
        if missing:
            raise PackageLocateError(
                "Locked packages are no longer available: " + ", ".join(f"{p.nevra} ({p.repoid})" for p in missing),
                missing,
            )

        self.dest_dir.mkdir(parents=True, exist_ok=True)
        keyrings = {
            repoid: KeyRing(repoid, info.keys) for repoid, info in lockfile.repo_gpg_config.items() if info.gpgcheck
        }
        semaphore = asyncio.Semaphore(self.concurrency)
        self.logger.info(f"Downloading {len(packages)} package(s) to {self.dest_dir} ({self.concurrency} at a time)")
        try:
            async with aiohttp.ClientSession(timeout=FETCH_TIMEOUT) as session:
                results = await asyncio.gather(
                    *(
                        self._download_package(session, semaphore, pkg, url, lockfile, keyrings)
                        for pkg, url in zip(packages, urls)
                    ),
                    return_exceptions=True,
                )
        finally:
            for keyring in keyrings.values():
                keyring.cleanup()

        failures: Dict[Package, BaseException] = {}
        artifacts: List[VerifiedArtifact] = []
        for pkg, result in zip(packages, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failures[pkg] = result
            else:
                artifacts.append(result)
        if failures:
            raise DownloadError(failures)
        self.logger.info(f"Downloaded and verified {len(artifacts)} package(s)")
        return DownloadResult(artifacts=tuple(artifacts), local_packages=lockfile.local_packages)

    async def _download_package(
        self,
        session: aiohttp.ClientSession,
        semaphore: asyncio.Semaphore,
        package: Package,
        url: str,
        lockfile: Lockfile,
        keyrings: Dict[str, KeyRing],
    ) -> VerifiedArtifact:
        logger = logutil.entity_logger(self.logger, package.nevra)
        target = self.dest_dir / artifact_filename(package)
        part = target.with_name(target.name + ".part")
        async with semaphore:
            try:
                digest = await self._fetch_with_retry(session, url, part, package.checksum.algorithm, logger)
                if digest != package.checksum.checksum:
                    raise ChecksumMismatchError(
                        f"Checksum mismatch for {package.nevra}: expected {package.checksum}, "
                        f"got {package.checksum.algorithm}:{digest}",
                        package,
                    )
                await self._verify_signature(package, part, lockfile, keyrings, logger)
                os.replace(part, target)
            finally:
                if part.exists():
                    part.unlink()
        logger.info(f"Verified {target}")
        return VerifiedArtifact(package=package, path=target)

    async def _fetch_with_retry(self, session, url: str, part: Path, algorithm: Algorithm, logger) -> str:
        def _log_retry(retry_state):
            logger.warning(
                f"Attempt {retry_state.attempt_number} of {self.retries} failed: {retry_state.outcome.exception()}"
            )

        @retry(
            reraise=True,
            stop=stop_after_attempt(self.retries),
            wait=self.retry_wait,
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=_log_retry,
        )
        async def _fetch():
            return await self._fetch(session, url, part, algorithm, logger)

        return await _fetch()

    @start_as_current_span_async(TRACER, "downloader.fetch")
    async def _fetch(self, session: aiohttp.ClientSession, url: str, part: Path, algorithm: Algorithm, logger) -> str:
        """Stream url into part and return the hex digest of the received bytes"""
        trace.get_current_span().set_attribute("downloader.url", url)
        hasher = algorithm.new_hash()
        logger.debug(f"Fetching {url}")
        try:
            async with session.get(url) as response:
                response.raise_for_status()
                with open(part, "wb") as f:
                    async for chunk in response.content.iter_chunked(constants.DOWNLOAD_CHUNK_SIZE):
                        hasher.update(chunk)
                        f.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransientFetchError(f"Fetching {url} failed: {type(e).__name__}: {e}") from e
        return hasher.hexdigest()

    @staticmethod
    async def _verify_signature(
        package: Package, path: Path, lockfile: Lockfile, keyrings: Dict[str, KeyRing], logger
    ) -> None:
        info = lockfile.repo_gpg_config.get(package.repoid)
        if info is None:
            raise SignatureError(
                f"The lockfile records no GPG policy for repository {package.repoid}; update the lockfile", package
            )
        if not info.gpgcheck:
            logger.debug(f"Signature check disabled for repository {package.repoid}")
            return
        await keyrings[package.repoid].verify(package, path)
