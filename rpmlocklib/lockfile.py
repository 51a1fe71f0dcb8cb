import os
import stat
import tempfile
from dataclasses import dataclass, field
from logging import Logger
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import yaml

from rpmlocklib import constants, local_rpms, logutil
from rpmlocklib.config import Config
from rpmlocklib.exceptions import LockfileFormatError, LockfilePersistenceError
from rpmlocklib.model import LocalPackage, Package, RepoKeyInfo, requirement_union

LOGGER = logutil.get_logger(__name__)

ADDING = "Adding"
UPDATING = "Updating"
REMOVING = "Removing"


@dataclass(frozen=True)
class PackageUpdate:
    """
    A change of a single package between two lockfiles.

    Attributes:
        action (str): One of "Adding", "Updating" or "Removing".
        name (str): Package name.
        old_evr (Optional[str]): Version in the previous lockfile, None when added.
        new_evr (Optional[str]): Version in the new lockfile, None when removed.
    """

    action: str
    name: str
    old_evr: Optional[str] = None
    new_evr: Optional[str] = None

    @property
    def detail(self) -> str:
        if self.action == UPDATING:
            return f"{self.name} {self.old_evr} -> {self.new_evr}"
        if self.action == REMOVING:
            return f"{self.name} {self.old_evr}"
        return f"{self.name} {self.new_evr}"

    def __str__(self) -> str:
        return f"{self.action} {self.detail}"


@dataclass(frozen=True)
class Lockfile:
    """
    The pinned result of resolving a declared configuration.

    A Lockfile is never modified once constructed; re-resolving produces a new instance so
    that the previous one stays available for reporting changes. The constructor puts
    packages and local packages in their natural order and drops exact duplicates, and
    orders repo_gpg_config by repository id, so the serialized form is deterministic.
    """

    pkg_specs: Tuple[str, ...]
    packages: Tuple[Package, ...]
    local_packages: Tuple[LocalPackage, ...] = ()
    repo_gpg_config: Mapping[str, RepoKeyInfo] = field(default_factory=dict)
    global_key_specs: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "pkg_specs", tuple(self.pkg_specs))
        object.__setattr__(self, "packages", tuple(sorted(set(self.packages))))
        object.__setattr__(self, "local_packages", tuple(sorted(set(self.local_packages))))
        object.__setattr__(
            self, "repo_gpg_config",
            MappingProxyType({k: self.repo_gpg_config[k] for k in sorted(self.repo_gpg_config)}),
        )
        object.__setattr__(self, "global_key_specs", tuple(self.global_key_specs))

    def __hash__(self):
        return hash((self.pkg_specs, self.packages, self.local_packages,
                     tuple(self.repo_gpg_config.items()), self.global_key_specs))

    def is_compatible_excluding_local_rpms(self, config: Config) -> bool:
        """
        Returns True if the lockfile was resolved from the same package specs and global GPG
        keys as the given configuration, compared exactly and in order.

        Local RPMs are not inspected, so this check can be done without them being present.
        """
        return (
            self.pkg_specs == tuple(config.contents.packages)
            and self.global_key_specs == tuple(config.contents.gpgkeys)
        )

    async def is_compatible_including_local_rpms(self, config: Config) -> bool:
        """
        Like is_compatible_excluding_local_rpms, but additionally re-reads every local RPM
        referenced by the configuration and requires the union of their requirements to equal
        the requirements recorded in the lockfile.

        Local RPM versions do not matter; only a change of requirements makes the lockfile
        incompatible.

        :raises LocalRpmError: if a local RPM cannot be read; this is not reported as incompatibility
        """
        if not self.is_compatible_excluding_local_rpms(config):
            return False
        current = await local_rpms.read_local_rpm_requires(config.local_rpm_paths())
        return current == requirement_union(self.local_packages)

    def iter_packages(self) -> Iterator[Package]:
        """Iterate over the resolved remote packages in their natural order"""
        return iter(self.packages)

    def package_updates(self, previous: Optional["Lockfile"]) -> List[PackageUpdate]:
        """
        Compute the changes from a previous lockfile to this one.

        Updates and removals come first, ordered by package name as found in the previous
        lockfile, followed by additions ordered by name. Packages with an unchanged version
        are not reported. A previous value of None is treated as a lockfile with no packages.
        """
        new = {pkg.name: pkg.evr for pkg in self.packages}
        old = {pkg.name: pkg.evr for pkg in previous.packages} if previous else {}

        updates = []
        for name in sorted(old):
            evr = old[name]
            if name in new:
                new_evr = new.pop(name)
                if new_evr != evr:
                    updates.append(PackageUpdate(UPDATING, name, evr, new_evr))
            else:
                updates.append(PackageUpdate(REMOVING, name, old_evr=evr))
        for name in sorted(new):
            updates.append(PackageUpdate(ADDING, name, new_evr=new[name]))
        return updates

    def print_updates(self, previous: Optional["Lockfile"], logger: Optional[Logger] = None) -> List[PackageUpdate]:
        """Log the changes from a previous lockfile at DEBUG and return them for rendering"""
        logger = logger or LOGGER
        updates = self.package_updates(previous)
        for update in updates:
            logger.debug(str(update))
        return updates

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the lockfile to a dictionary for serialization.

        Optional sections are left out when empty.
        """
        data: Dict[str, Any] = {
            "pkg_specs": list(self.pkg_specs),
            "packages": [pkg.to_dict() for pkg in self.packages],
        }
        if self.local_packages:
            data["local_packages"] = [pkg.to_dict() for pkg in self.local_packages]
        if self.repo_gpg_config:
            data["repo_gpg_config"] = {repoid: info.to_dict() for repoid, info in self.repo_gpg_config.items()}
        if self.global_key_specs:
            data["global_key_specs"] = list(self.global_key_specs)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Lockfile":
        """
        Decode a lockfile dictionary.

        Sections introduced after the first lockfile format (local_packages, repo_gpg_config,
        global_key_specs and the per-package arch) default to empty when absent.

        :raises LockfileFormatError: if required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise LockfileFormatError("Lockfile content must be a mapping")
        try:
            return cls(
                pkg_specs=tuple(str(s) for s in _list(data, "pkg_specs", required=True)),
                packages=tuple(Package.from_dict(p) for p in _list(data, "packages", required=True)),
                local_packages=tuple(LocalPackage.from_dict(p) for p in _list(data, "local_packages")),
                repo_gpg_config={
                    str(repoid): RepoKeyInfo.from_dict(info)
                    for repoid, info in (data.get("repo_gpg_config") or {}).items()
                },
                global_key_specs=tuple(str(s) for s in _list(data, "global_key_specs")),
            )
        except LockfileFormatError:
            raise
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise LockfileFormatError(f"Malformed lockfile: {type(e).__name__}: {e}") from e

    @classmethod
    def read_from_file(cls, path: Union[str, Path]) -> "Lockfile":
        """
        Load a lockfile from disk.

        :raises FileNotFoundError: if there is no lockfile at path
        :raises LockfileFormatError: if the file cannot be read or decoded
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise
        except OSError as e:
            raise LockfileFormatError(f"Unable to read lockfile {path}: {e}") from e
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise LockfileFormatError(f"Unable to parse lockfile {path}: {e}") from e
        try:
            return cls.from_dict(data)
        except LockfileFormatError as e:
            raise LockfileFormatError(f"{path}: {e}") from e

    def write_to_file(self, path: Union[str, Path]) -> None:
        """
        Write the lockfile to disk, preceded by a generated-file header.

        The content goes to a temporary file in the same directory which then replaces the
        target, so an interrupted write never leaves a truncated lockfile behind. An existing
        lockfile keeps its permission bits; a new one gets the default mode for the umask.

        :raises LockfilePersistenceError: if serializing or writing fails
        """
        path = Path(path)
        tmp_name = None
        try:
            content = constants.LOCKFILE_HEADER + yaml.safe_dump(self.to_dict(), sort_keys=False)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            os.fchmod(fd, _file_mode(path))
            with os.fdopen(fd, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, yaml.YAMLError) as e:
            raise LockfilePersistenceError(f"Unable to write lockfile {path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass


def _list(data: Dict[str, Any], key: str, required: bool = False) -> Iterable[Any]:
    if key not in data or data[key] is None:
        if required:
            raise LockfileFormatError(f"Missing required field {key!r}")
        return []
    value = data[key]
    if not isinstance(value, list):
        raise LockfileFormatError(f"Field {key!r} must be a list")
    return value


def _file_mode(path: Path) -> int:
    """Permission bits for a lockfile written to path; mkstemp alone would create it 0600"""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask
