from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

if TYPE_CHECKING:
    from rpmlocklib.model import Package


class RpmLockError(Exception):
    """A broad exception for errors raised by rpmlock"""

    pass


class ConfigError(RpmLockError):
    """The declared configuration could not be loaded or is invalid"""

    pass


class LockfileFormatError(RpmLockError):
    """A lockfile on disk could not be decoded"""

    pass


class LockfilePersistenceError(RpmLockError):
    """Writing a lockfile failed; the lockfile on disk was not updated"""

    pass


class LockfileOutOfDateError(RpmLockError):
    """A locked operation was requested but the lockfile does not match the configuration"""

    pass


class LocalRpmError(RpmLockError):
    """A local RPM input could not be read or parsed"""

    def __init__(self, message: str, path: str) -> None:
        super().__init__(message)
        self.path = path


class ResolverError(RpmLockError):
    """Base class for failures reported while running the dependency resolver"""

    pass


class UnsatisfiableError(ResolverError):
    """The declared package specs cannot be satisfied by the available repositories"""

    def __init__(self, message: str, problems: Optional[Sequence[str]] = None) -> None:
        super().__init__(message)
        self.problems: List[str] = list(problems or [])

    def __str__(self) -> str:
        if not self.problems:
            return super().__str__()
        details = "\n".join(f"  - {problem}" for problem in self.problems)
        return f"{super().__str__()}\n{details}"


class ResolverEnvironmentError(ResolverError):
    """The resolver process could not run or produced output that could not be understood"""

    def __init__(self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class DuplicatePackageError(ResolverError):
    """The resolver returned conflicting entries for the same package"""

    pass


class PackageLocateError(ResolverError):
    """Locked packages could not be found in their repositories any more"""

    def __init__(self, message: str, missing: Sequence["Package"]) -> None:
        super().__init__(message)
        self.missing = list(missing)


class IntegrityError(RpmLockError):
    """A downloaded artifact failed checksum or signature verification"""

    def __init__(self, message: str, package: "Package") -> None:
        super().__init__(message)
        self.package = package


class ChecksumMismatchError(IntegrityError):
    pass


class SignatureError(IntegrityError):
    pass


class TransientFetchError(RpmLockError):
    """A network or I/O error occurred while fetching an artifact; the fetch may be retried"""

    pass


class DownloadError(RpmLockError):
    """One or more packages could not be downloaded and verified"""

    def __init__(self, failures: Dict["Package", BaseException]) -> None:
        self.failures = dict(sorted(failures.items()))
        lines = [f"{len(self.failures)} package(s) failed to download:"]
        lines.extend(f"  {package.nevra} from {package.repoid}: {error}" for package, error in self.failures.items())
        super().__init__("\n".join(lines))
