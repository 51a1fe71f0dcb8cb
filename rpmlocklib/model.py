import hashlib
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from typing import Any, Dict, Iterable, Optional, Tuple

from rpmlocklib.exceptions import LockfileFormatError


@total_ordering
class Algorithm(Enum):
    """
    Checksum algorithms supported by RPM repositories.

    Members are ordered by declaration. The ordering only exists so that lockfile
    contents serialize deterministically; it says nothing about cryptographic strength.
    """

    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @classmethod
    def parse(cls, name: str) -> "Algorithm":
        try:
            return cls(str(name).lower())
        except ValueError:
            raise LockfileFormatError(f"Unsupported checksum algorithm: {name!r}")

    def new_hash(self):
        return hashlib.new(self.value)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Algorithm):
            return NotImplemented
        members = list(Algorithm)
        return members.index(self) < members.index(other)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, order=True)
class Checksum:
    """
    Digest of a package artifact.

    Two checksums are equal only if both the algorithm and the digest string match exactly;
    digests are not case-folded and no validation of their length or charset is done here.
    """

    algorithm: Algorithm
    checksum: str

    def to_dict(self) -> Dict[str, str]:
        return {"algorithm": self.algorithm.value, "checksum": self.checksum}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checksum":
        return cls(algorithm=Algorithm.parse(data["algorithm"]), checksum=str(data["checksum"]))

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.checksum}"


@total_ordering
@dataclass(frozen=True)
class Package:
    """
    Immutable data class representing a resolved remote RPM package.

    Equality and ordering use every field, in the order name, evr, checksum, repoid, arch.

    Attributes:
        name (str): Name of the RPM package.
        evr (str): Epoch-Version-Release string identifying the package version.
        checksum (Checksum): Checksum of the package file as published by its repository.
        repoid (str): Identifier of the repository the package was resolved from.
        arch (Optional[str]): Package architecture. None for lockfiles written before the
            architecture was recorded; it is never guessed.
    """

    name: str
    evr: str
    checksum: Checksum
    repoid: str
    arch: Optional[str] = None

    @property
    def nevra(self) -> str:
        if self.arch:
            return f"{self.name}-{self.evr}.{self.arch}"
        return f"{self.name}-{self.evr}"

    def _sort_key(self) -> tuple:
        # a missing arch sorts before any recorded one
        return (self.name, self.evr, self.checksum, self.repoid, (self.arch is not None, self.arch or ""))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Package):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "name": self.name,
            "evr": self.evr,
            "checksum": self.checksum.to_dict(),
            "repoid": self.repoid,
        }
        if self.arch is not None:
            data["arch"] = self.arch
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Package":
        arch = data.get("arch")
        return cls(
            name=str(data["name"]),
            evr=str(data["evr"]),
            checksum=Checksum.from_dict(data["checksum"]),
            repoid=str(data["repoid"]),
            arch=str(arch) if arch is not None else None,
        )


@dataclass(frozen=True, order=True)
class LocalPackage:
    """
    A package supplied as an RPM file on disk.

    Only the name and the declared requirements are recorded. The path and the version of
    the file are deliberately left out so that a local RPM can be rebuilt with a new version
    without invalidating the lockfile, as long as its requirements stay the same.
    """

    name: str
    requires: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "requires", tuple(self.requires))

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "requires": list(self.requires)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalPackage":
        return cls(name=str(data["name"]), requires=tuple(str(r) for r in data.get("requires") or []))


@dataclass(frozen=True)
class RepoKeyInfo:
    """GPG policy of a repository: whether signatures are checked, and the armored keys to trust."""

    gpgcheck: bool
    keys: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "keys", tuple(self.keys))

    def to_dict(self) -> Dict[str, object]:
        return {"gpgcheck": self.gpgcheck, "keys": list(self.keys)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepoKeyInfo":
        gpgcheck = data["gpgcheck"]
        if not isinstance(gpgcheck, bool):
            raise LockfileFormatError(f"gpgcheck must be a boolean, got {gpgcheck!r}")
        return cls(gpgcheck=gpgcheck, keys=tuple(str(k) for k in data.get("keys") or []))


def requirement_union(local_packages: Iterable[LocalPackage]) -> frozenset:
    """Returns every requirement string declared by the given local packages"""
    return frozenset(req for pkg in local_packages for req in pkg.requires)
