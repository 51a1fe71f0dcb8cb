"""
Dependency resolution helper executed by the system python interpreter.

The dnf bindings are only available to the distribution's own interpreter, so rpmlock does
not import this module; it runs it as a script, writes a JSON request on stdin and reads a
JSON reply from stdout. Only the standard library and dnf/hawkey may be used here.

Requests:
    {"mode": "resolve", "repositories": [...], "reposdirs": [...], "packages": [...],
     "local_rpms": [...], "gpgkeys": [...], "weak_deps": false, "cachedir": null, "releasever": null}
    {"mode": "locate", "repositories": [...], "reposdirs": [...], "locked": [<package>, ...], ...}

Exit status 0 with the result on stdout, 2 when the request cannot be satisfied, 1 for any
other failure. Failures are reported as {"error": {"kind", "message", "problems"}}.
"""
import json
import sys
import tempfile

EXIT_OK = 0
EXIT_ENVIRONMENT = 1
EXIT_UNSATISFIABLE = 2

COMMANDLINE_REPO_ID = "@commandline"


class RequestFailed(Exception):
    def __init__(self, kind, message, problems=None):
        super().__init__(message)
        self.kind = kind
        self.problems = list(problems or [])

    @property
    def exit_status(self):
        return EXIT_UNSATISFIABLE if self.kind == "unsatisfiable" else EXIT_ENVIRONMENT

    def to_dict(self):
        return {"error": {"kind": self.kind, "message": str(self), "problems": self.problems}}


def package_record(pkg, chksum_name):
    """Describe a dnf package the way the lockfile records it"""
    chksum_type, digest = pkg.chksum
    return {
        "name": pkg.name,
        "evr": pkg.evr,
        "checksum": {"algorithm": chksum_name(chksum_type).lower(), "checksum": digest.hex()},
        "repoid": pkg.reponame,
        "arch": pkg.arch,
    }


def matches_locked(record, locked):
    """True if a package record corresponds to a locked package; a missing locked arch matches any arch"""
    if locked.get("arch") is not None and record["arch"] != locked["arch"]:
        return False
    return (
        record["name"] == locked["name"]
        and record["evr"] == locked["evr"]
        and record["repoid"] == locked["repoid"]
        and record["checksum"] == locked["checksum"]
    )


def fetch_key(url, repo):
    """
    Armored keys published at url, downloaded with the ssl and proxy settings of repo.
    A key file may hold several keys; each one is returned once.
    """
    import dnf.crypto
    import dnf.exceptions

    try:
        found = dnf.crypto.retrieve(url, repo)
    except dnf.exceptions.Error as e:
        raise RequestFailed("environment", f"Unable to retrieve GPG key {url} for repository {repo.id}: {e}")
    keys = []
    for key in found:
        armored = key.raw_key.decode("utf-8")
        if armored not in keys:
            keys.append(armored)
    return keys


def repo_gpg_config(base, repoids, global_keys, fetch=fetch_key):
    """GPG policy of every repository that contributed at least one package"""
    config = {}
    for repoid in sorted(repoids):
        repo = base.repos[repoid]
        keys = []
        for url in list(repo.gpgkey) + list(global_keys):
            try:
                keys.extend(fetch(url, repo))
            except (OSError, ValueError) as e:
                raise RequestFailed("environment", f"Unable to retrieve GPG key {url} for repository {repoid}: {e}")
        config[repoid] = {"gpgcheck": bool(repo.gpgcheck), "keys": keys}
    return config


def make_base(request):
    import dnf
    import dnf.exceptions
    import dnf.rpm

    base = dnf.Base()
    conf = base.conf
    conf.reposdir = request.get("reposdirs") or []
    conf.cachedir = request.get("cachedir") or tempfile.mkdtemp(prefix="rpmlock-dnf-")
    conf.install_weak_deps = bool(request.get("weak_deps", False))
    conf.substitutions.update_from_etc("/")
    releasever = request.get("releasever") or dnf.rpm.detect_releasever("/")
    if releasever:
        conf.releasever = releasever

    try:
        base.read_all_repos()
    except dnf.exceptions.Error as e:
        raise RequestFailed("environment", f"Unable to read repository configuration: {e}")

    wanted = list(request.get("repositories") or [])
    unknown = [repoid for repoid in wanted if base.repos.get(repoid) is None]
    if unknown:
        raise RequestFailed("environment", f"Unknown repositories: {', '.join(unknown)}")
    for repo in base.repos.all():
        if repo.id in wanted:
            repo.enable()
        else:
            repo.disable()

    try:
        base.fill_sack(load_system_repo=False)
    except dnf.exceptions.Error as e:
        raise RequestFailed("environment", f"Unable to load repository metadata: {e}")
    return base


def resolve(base, request):
    import dnf.exceptions
    import hawkey

    try:
        local = base.add_remote_rpms(request.get("local_rpms") or [], strict=True)
    except (IOError, dnf.exceptions.Error) as e:
        raise RequestFailed("environment", f"Unable to read local RPMs: {e}")
    for pkg in local:
        base.package_install(pkg, strict=True)

    not_found = []
    for spec in request.get("packages") or []:
        try:
            base.install(spec)
        except dnf.exceptions.MarkingError:
            not_found.append(spec)
    if not_found:
        raise RequestFailed(
            "unsatisfiable",
            "No package matches the requested specs",
            [f"No match for argument: {spec}" for spec in not_found],
        )

    try:
        base.resolve()
    except dnf.exceptions.DepsolveError as e:
        raise RequestFailed("unsatisfiable", "Dependency resolution failed", str(e).splitlines())

    packages = [
        package_record(pkg, hawkey.chksum_name)
        for pkg in base.transaction.install_set
        if pkg.reponame != COMMANDLINE_REPO_ID
    ]
    return {
        "packages": packages,
        "repo_gpg_config": repo_gpg_config(base, {p["repoid"] for p in packages}, request.get("gpgkeys") or []),
    }


def locate(base, request):
    import hawkey

    urls = []
    for locked in request.get("locked") or []:
        query = base.sack.query().available().filter(name=locked["name"], reponame=locked["repoid"])
        found = None
        for pkg in query:
            if matches_locked(package_record(pkg, hawkey.chksum_name), locked):
                found = pkg.remote_location()
                break
        urls.append(found)
    return {"urls": urls}


def main():
    try:
        request = json.load(sys.stdin)
        mode = request["mode"]
        if mode not in ("resolve", "locate"):
            raise RequestFailed("environment", f"Unknown request mode {mode!r}")
        try:
            base = make_base(request)
        except ImportError as e:
            raise RequestFailed("environment", f"The dnf python bindings are not available: {e}")
        try:
            result = resolve(base, request) if mode == "resolve" else locate(base, request)
        finally:
            base.close()
    except RequestFailed as e:
        json.dump(e.to_dict(), sys.stdout)
        return e.exit_status
    except (ValueError, KeyError) as e:
        json.dump(RequestFailed("environment", f"Malformed request: {e}").to_dict(), sys.stdout)
        return EXIT_ENVIRONMENT
    json.dump(result, sys.stdout)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
