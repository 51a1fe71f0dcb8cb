"""
Reading dependency metadata from RPM files supplied on disk.

Only the package name and its requirements are collected. Requirements on rpmlib()
capabilities describe features of the rpm binary used to build the package rather than
packages to install, so they are dropped.
"""
import asyncio
import os
from pathlib import Path
from typing import FrozenSet, Iterable, List, Union

from opentelemetry import trace

from rpmlocklib import exectools, logutil
from rpmlocklib.exceptions import LocalRpmError
from rpmlocklib.model import LocalPackage, requirement_union
from rpmlocklib.telemetry import start_as_current_span_async

TRACER = trace.get_tracer(__name__)
LOGGER = logutil.get_logger(__name__)

QUERY_FORMAT = "%{NAME}\\n[%{REQUIRENEVRS}\\n]"


def parse_query_output(output: str) -> LocalPackage:
    """
    Parse the output of `rpm -qp --queryformat QUERY_FORMAT`.

    :param output: First line is the package name, each following line one requirement
    :return: LocalPackage with requirements in the order rpm reports them
    :raises ValueError: if the output does not contain a package name
    """
    lines = [line.strip() for line in output.splitlines()]
    if not lines or not lines[0]:
        raise ValueError("rpm query returned no package name")
    name, requires = lines[0], []
    for req in lines[1:]:
        if not req or req.startswith("rpmlib(") or req in requires:
            continue
        requires.append(req)
    return LocalPackage(name=name, requires=tuple(requires))


@exectools.limit_concurrency(limit=8)
async def read_local_package(path: Union[str, Path]) -> LocalPackage:
    """
    Read the name and requirements of a local RPM file.

    :raises LocalRpmError: if the file is missing or rpm cannot query it
    """
    path = Path(path)
    if not path.is_file():
        raise LocalRpmError(f"Local RPM {path} does not exist", str(path))
    cmd = ["rpm", "-qp", "--nosignature", "--nodigest", "--queryformat", QUERY_FORMAT, str(path)]
    try:
        rc, out, err = await exectools.cmd_gather_async(cmd, check=False, env={**os.environ, "LC_ALL": "C"})
    except OSError as e:
        raise LocalRpmError(f"Unable to run rpm to query {path}: {e}", str(path)) from e
    if rc != 0:
        raise LocalRpmError(f"Unable to read local RPM {path}: {err.strip() or out.strip()}", str(path))
    try:
        package = parse_query_output(out)
    except ValueError as e:
        raise LocalRpmError(f"Unable to parse metadata of local RPM {path}: {e}", str(path)) from e
    LOGGER.debug(f"Local RPM {path} provides {package.name} with {len(package.requires)} requirement(s)")
    return package


@start_as_current_span_async(TRACER, "local_rpms.read_local_packages")
async def read_local_packages(paths: Iterable[Union[str, Path]]) -> List[LocalPackage]:
    """Scan every local RPM concurrently and return the packages in their natural order"""
    paths = list(paths)
    trace.get_current_span().set_attribute("local_rpms.count", len(paths))
    if not paths:
        return []
    packages = await asyncio.gather(*(read_local_package(path) for path in paths))
    return sorted(set(packages))


async def read_local_rpm_requires(paths: Iterable[Union[str, Path]]) -> FrozenSet[str]:
    """Returns the union of the requirements declared by every local RPM"""
    return requirement_union(await read_local_packages(paths))
