from collections import defaultdict
from logging import Logger
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from opentelemetry import trace

from rpmlocklib import local_rpms, logutil
from rpmlocklib.config import Config
from rpmlocklib.exceptions import (DuplicatePackageError, LockfileFormatError, LockfileOutOfDateError,
                                   ResolverEnvironmentError)
from rpmlocklib.lockfile import Lockfile, PackageUpdate
from rpmlocklib.model import Package, RepoKeyInfo
from rpmlocklib.solver import DnfSolver
from rpmlocklib.telemetry import start_as_current_span_async

TRACER = trace.get_tracer(__name__)


class Resolver:
    """
    Turns a declared configuration into a new Lockfile.

    Remote packages and repository GPG policy come from the external resolver. Local packages
    are always re-read from the RPM files themselves, never taken from an earlier lockfile.
    """

    def __init__(self, config: Config, solver: Optional[DnfSolver] = None, logger: Optional[Logger] = None):
        self.config = config
        self.logger = logger or logutil.get_logger(__name__)
        self.solver = solver or DnfSolver(config, logger=self.logger)

    @start_as_current_span_async(TRACER, "resolver.resolve")
    async def resolve(self) -> Lockfile:
        """
        Resolve the configuration.

        :raises LocalRpmError: if a local RPM cannot be read
        :raises UnsatisfiableError: if the declared specs cannot be satisfied
        :raises ResolverEnvironmentError: if the resolver failed for any other reason
        :raises DuplicatePackageError: if the resolver returned conflicting entries for one package
        """
        local_paths = self.config.local_rpm_paths()
        local_packages = await local_rpms.read_local_packages(local_paths)
        self.logger.info(
            f"Resolving {len(self.config.remote_package_specs())} package spec(s) "
            f"and {len(local_packages)} local RPM(s)"
        )
        reply = await self.solver.resolve(local_paths)

        packages = self._parse_packages(reply["packages"])
        repo_gpg_config = self._parse_repo_gpg_config(reply["repo_gpg_config"])
        missing_policy = sorted({pkg.repoid for pkg in packages} - set(repo_gpg_config))
        if missing_policy:
            raise ResolverEnvironmentError(
                f"Resolver reported no GPG configuration for repositories: {', '.join(missing_policy)}"
            )

        current_span = trace.get_current_span()
        current_span.set_attribute("resolver.package_count", len(packages))
        current_span.set_attribute("resolver.local_package_count", len(local_packages))
        self.logger.info(f"Resolved {len(packages)} package(s) from {len(repo_gpg_config)} repositories")

        return Lockfile(
            pkg_specs=tuple(self.config.contents.packages),
            packages=tuple(packages),
            local_packages=tuple(local_packages),
            repo_gpg_config=repo_gpg_config,
            global_key_specs=tuple(self.config.contents.gpgkeys),
        )

    @staticmethod
    def _parse_packages(records: List[Any]) -> List[Package]:
        try:
            packages = sorted({Package.from_dict(record) for record in records})
        except (LockfileFormatError, KeyError, TypeError, AttributeError) as e:
            raise ResolverEnvironmentError(f"Resolver returned a malformed package record: {e}") from e

        by_name_arch = defaultdict(list)
        for pkg in packages:
            by_name_arch[(pkg.name, pkg.arch)].append(pkg)
        conflicts = {key: pkgs for key, pkgs in by_name_arch.items() if len(pkgs) > 1}
        if conflicts:
            details = "; ".join(
                f"{name}.{arch}: " + ", ".join(f"{p.evr} ({p.repoid}, {p.checksum})" for p in pkgs)
                for (name, arch), pkgs in sorted(conflicts.items(), key=lambda item: (item[0][0], item[0][1] or ""))
            )
            raise DuplicatePackageError(f"Resolver returned conflicting entries for the same package: {details}")
        return packages

    @staticmethod
    def _parse_repo_gpg_config(records: Dict[str, Any]) -> Dict[str, RepoKeyInfo]:
        try:
            return {str(repoid): RepoKeyInfo.from_dict(info) for repoid, info in records.items()}
        except (LockfileFormatError, KeyError, TypeError, AttributeError) as e:
            raise ResolverEnvironmentError(f"Resolver returned malformed repository GPG configuration: {e}") from e


def _read_previous(path: Path) -> Optional[Lockfile]:
    try:
        return Lockfile.read_from_file(path)
    except FileNotFoundError:
        return None


async def _resolve_and_write(
    config: Config, path: Path, previous: Optional[Lockfile], resolver: Optional[Resolver]
) -> Tuple[Lockfile, List[PackageUpdate]]:
    lockfile = await (resolver or Resolver(config)).resolve()
    lockfile.write_to_file(path)
    return lockfile, lockfile.print_updates(previous)


async def update_lockfile(
    config: Config, path: Union[str, Path], resolver: Optional[Resolver] = None
) -> Tuple[Lockfile, List[PackageUpdate]]:
    """
    Re-resolve unconditionally and replace the lockfile at path.

    :return: the new lockfile and the changes relative to the lockfile it replaced
    """
    path = Path(path)
    return await _resolve_and_write(config, path, _read_previous(path), resolver)


async def ensure_lockfile(
    config: Config, path: Union[str, Path], locked: bool = False, resolver: Optional[Resolver] = None
) -> Tuple[Lockfile, List[PackageUpdate]]:
    """
    Return a lockfile that matches the configuration, re-resolving only when needed.

    An existing lockfile is reused when it is compatible with the configuration including
    the requirements of local RPMs. Otherwise the configuration is resolved again and the
    lockfile on disk replaced, unless locked is set.

    :raises LockfileOutOfDateError: if locked is set and the lockfile is missing or incompatible
    :raises LocalRpmError: if local RPMs cannot be read while checking compatibility
    """
    logger = resolver.logger if resolver else logutil.get_logger(__name__)
    path = Path(path)
    previous = _read_previous(path)
    if previous is not None and await previous.is_compatible_including_local_rpms(config):
        logger.info(f"Lockfile {path} is up to date")
        return previous, []

    if locked:
        reason = "does not exist" if previous is None else "is out of date"
        raise LockfileOutOfDateError(f"Lockfile {path} {reason} and re-resolving is not allowed")

    if previous is not None:
        logger.info(f"Lockfile {path} is out of date; resolving again")
    return await _resolve_and_write(config, path, previous, resolver)
