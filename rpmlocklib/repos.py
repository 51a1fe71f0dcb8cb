from pathlib import Path
from typing import Iterable, Union

from rpmlocklib import logutil
from rpmlocklib.config import RepositoryDefinition
from rpmlocklib.exceptions import ConfigError

LOGGER = logutil.get_logger(__name__)

# File name of the repo file generated for inline repository definitions
GENERATED_REPO_FILENAME = "rpmlock.repo"

# Header for generated repo files
REPO_FILE_HEADER = """\
# This file is generated by rpmlock from the repositories declared in its configuration.
# Any manual changes will be overwritten.
"""


class Repo(object):
    """Represents a single yum repository declared inline in the configuration,
    and renders it as a section of a dnf .repo file."""

    def __init__(self, definition: RepositoryDefinition):
        self.name = definition.id
        self.baseurl = definition.url
        self._options = dict(definition.options)
        for reserved in ('baseurl', 'name'):
            if reserved in self._options:
                raise ConfigError(f'Repository {self.name} must not set "{reserved}" in options')

    def __repr__(self):
        return f'Repo({self.name}, {self.baseurl})'

    def conf_section(self) -> str:
        """
        Returns a str that represents a dnf repo configuration section for this repo. e.g.
            [appstream]
            baseurl = https://example.com/appstream/x86_64/os/
            enabled = 1
            gpgcheck = 1
            gpgkey = https://example.com/RPM-GPG-KEY
            name = appstream
        """
        conf = {k: _format_value(v) for k, v in self._options.items()}
        conf['baseurl'] = self.baseurl
        conf['name'] = self.name
        conf.setdefault('enabled', '1')
        # Usually gpgcheck will not be specified; never turn it off implicitly
        conf.setdefault('gpgcheck', '1')

        result = '[{}]\n'.format(self.name)
        # Sort keys so they are always in the same order, makes unit
        # testing much easier
        for k in sorted(conf.keys()):
            result += '{} = {}\n'.format(k, conf[k])
        result += '\n'
        return result


class Repos(object):
    """
    Represents the collection of inline repositories and provides repo file generation
    for the resolver.
    """

    def __init__(self, definitions: Iterable[RepositoryDefinition]):
        self._repos = {}
        for definition in definitions:
            if definition.id in self._repos:
                raise ConfigError(f'Repository {definition.id} is declared more than once')
            self._repos[definition.id] = Repo(definition)

    def __len__(self):
        return len(self._repos)

    def repo_file(self) -> str:
        """Returns a str defining every repository as a section of a dnf configuration file."""
        return REPO_FILE_HEADER + '\n' + ''.join(r.conf_section() for r in self._repos.values())

    def write_repo_file(self, reposdir: Union[str, Path]) -> Path:
        """Write the repo file into reposdir and return its path"""
        path = Path(reposdir) / GENERATED_REPO_FILENAME
        LOGGER.debug(f'Writing {len(self)} repository definition(s) to {path}')
        with open(path, 'w') as f:
            f.write(self.repo_file())
        return path


def _format_value(value: Union[str, int, bool]) -> str:
    if isinstance(value, bool):
        return '1' if value else '0'
    return str(value)

