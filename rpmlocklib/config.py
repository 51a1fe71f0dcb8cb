from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, PositiveInt, ValidationError, field_validator

from rpmlocklib import constants
from rpmlocklib.exceptions import ConfigError


class RepositoryDefinition(BaseModel):
    """A repository defined inline in the configuration file rather than on the host"""

    id: str
    url: str
    options: Dict[str, Union[str, int, bool]] = {}

    @field_validator("id")
    def _id_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("repository id must not be empty")
        return value


# A repository is either the id of one configured on the host, or an inline definition
RepositorySpec = Union[str, RepositoryDefinition]


class Contents(BaseModel):
    repositories: List[RepositorySpec] = []
    packages: List[str] = []
    # Key URLs are kept exactly as written; lockfile compatibility is an exact comparison
    gpgkeys: List[str] = []
    weak_deps: bool = False

    @field_validator("packages")
    def _no_empty_specs(cls, value: List[str]) -> List[str]:
        for spec in value:
            if not spec.strip():
                raise ValueError("package specs must not be empty")
        return value


class DownloadConfig(BaseModel):
    concurrency: PositiveInt = constants.DEFAULT_DOWNLOAD_CONCURRENCY
    retries: PositiveInt = constants.DEFAULT_DOWNLOAD_RETRIES


class ResolverConfig(BaseModel):
    python: str = constants.DEFAULT_RESOLVER_PYTHON
    reposdirs: List[str] = Field(default_factory=lambda: list(constants.DEFAULT_REPOSDIRS))
    cachedir: Optional[str] = None
    releasever: Optional[str] = None


class Config(BaseModel):
    contents: Contents = Contents()
    download: DownloadConfig = DownloadConfig()
    resolver: ResolverConfig = ResolverConfig()
    # Directory local RPM paths are resolved against; the config file's directory when loaded from disk
    base_dir: Path = Field(default_factory=Path.cwd, exclude=True)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Config":
        """
        Load a configuration file.

        :param path: Path to a YAML configuration file
        :return: The parsed configuration
        :raises ConfigError: if the file cannot be read or does not describe a valid configuration
        """
        path = Path(path)
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Unable to read configuration {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration {path} must be a mapping")
        try:
            return cls.model_validate({**data, "base_dir": path.parent.absolute()})
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration {path}:\n{e}") from e

    @staticmethod
    def is_local_spec(spec: str) -> bool:
        return spec.endswith(".rpm")

    def local_rpm_paths(self) -> List[Path]:
        """Paths of local RPM inputs, in declaration order"""
        return [self.base_dir / spec for spec in self.contents.packages if self.is_local_spec(spec)]

    def remote_package_specs(self) -> List[str]:
        """Package specs to be satisfied from repositories, in declaration order"""
        return [spec for spec in self.contents.packages if not self.is_local_spec(spec)]

    def repository_definitions(self) -> List[RepositoryDefinition]:
        return [r for r in self.contents.repositories if isinstance(r, RepositoryDefinition)]

    def repository_ids(self) -> List[str]:
        return [r.id if isinstance(r, RepositoryDefinition) else r for r in self.contents.repositories]
