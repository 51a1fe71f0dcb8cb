import json
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from opentelemetry import trace

from rpmlocklib import constants, exectools, logutil
from rpmlocklib.config import Config
from rpmlocklib.exceptions import ResolverEnvironmentError, UnsatisfiableError
from rpmlocklib.model import Package
from rpmlocklib.repos import Repos
from rpmlocklib.telemetry import start_as_current_span_async

TRACER = trace.get_tracer(__name__)

# Executed by the system interpreter, see the module docstring
RESOLVER_SCRIPT = Path(__file__).with_name("dnf_resolve.py")


class DnfSolver:
    """
    Drives the dnf based resolver script.

    Each call starts one resolver process; the caller blocks until it exits. Requests and
    replies are JSON documents. Inline repository definitions from the configuration are
    rendered into a private reposdir which is searched before the configured ones.
    """

    def __init__(self, config: Config, logger=None):
        self.config = config
        self.logger = logger or logutil.get_logger(__name__)
        self.repos = Repos(config.repository_definitions())

    def _base_request(self, mode: str, reposdir: str) -> Dict[str, Any]:
        resolver = self.config.resolver
        return {
            "mode": mode,
            "repositories": self.config.repository_ids(),
            "reposdirs": [reposdir] + list(resolver.reposdirs),
            "cachedir": resolver.cachedir,
            "releasever": resolver.releasever,
            "weak_deps": self.config.contents.weak_deps,
        }

    @start_as_current_span_async(TRACER, "solver.resolve")
    async def resolve(self, local_rpms: Sequence[Path]) -> Dict[str, Any]:
        """
        Resolve the configured package specs together with the given local RPMs.

        :return: {"packages": [...], "repo_gpg_config": {...}} as produced by the resolver
        :raises UnsatisfiableError: if no set of available packages satisfies the request
        :raises ResolverEnvironmentError: if the resolver could not run or its reply is unusable
        """
        with tempfile.TemporaryDirectory(prefix="rpmlock-repos-") as reposdir:
            request = self._base_request("resolve", reposdir)
            request.update({
                "packages": self.config.remote_package_specs(),
                "local_rpms": [str(p) for p in local_rpms],
                "gpgkeys": list(self.config.contents.gpgkeys),
            })
            reply = await self._run(request, reposdir)
        for key, kind in (("packages", list), ("repo_gpg_config", dict)):
            if not isinstance(reply.get(key), kind):
                raise ResolverEnvironmentError(f"Resolver reply has no valid {key!r} field")
        return reply

    @start_as_current_span_async(TRACER, "solver.locate")
    async def locate(self, packages: Sequence[Package]) -> List[Optional[str]]:
        """
        Find the download URL of each locked package.

        :return: One URL per package, in order; None where the package is no longer available
        :raises ResolverEnvironmentError: if the resolver could not run or its reply is unusable
        """
        with tempfile.TemporaryDirectory(prefix="rpmlock-repos-") as reposdir:
            request = self._base_request("locate", reposdir)
            request["locked"] = [pkg.to_dict() for pkg in packages]
            reply = await self._run(request, reposdir)
        urls = reply.get("urls")
        if not isinstance(urls, list) or len(urls) != len(packages):
            raise ResolverEnvironmentError("Resolver reply does not list one location per package")
        return urls

    async def _run(self, request: Dict[str, Any], reposdir: str) -> Dict[str, Any]:
        if len(self.repos):
            self.repos.write_repo_file(reposdir)
        cmd = [self.config.resolver.python, str(RESOLVER_SCRIPT)]
        span = trace.get_current_span()
        span.set_attribute("solver.mode", request["mode"])
        span.set_attribute("solver.repositories", ",".join(request["repositories"]))

        try:
            rc, out, err = await exectools.cmd_gather_async(cmd, check=False, input=json.dumps(request).encode())
        except OSError as e:
            raise ResolverEnvironmentError(f"Unable to start resolver {cmd[0]}: {e}") from e

        try:
            reply = json.loads(out)
        except ValueError:
            raise ResolverEnvironmentError(
                f"Resolver exited with code {rc} and did not produce a valid reply", stderr=err
            )
        if not isinstance(reply, dict):
            raise ResolverEnvironmentError(f"Resolver exited with code {rc} with an unexpected reply", stderr=err)

        error = reply.get("error")
        if rc == constants.RESOLVER_EXIT_OK and error is None:
            return reply
        error = error if isinstance(error, dict) else {}
        message = error.get("message") or f"Resolver exited with code {rc}"
        if rc == constants.RESOLVER_EXIT_UNSATISFIABLE:
            raise UnsatisfiableError(message, error.get("problems") or [])
        raise ResolverEnvironmentError(message, stderr=err)
