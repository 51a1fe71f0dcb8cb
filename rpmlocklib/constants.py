NAME = "rpmlock"

DEFAULT_CONFIG_NAME = "rpmlock.yaml"
DEFAULT_LOCKFILE_NAME = "rpmlock.lock.yaml"

# Header written at the top of every lockfile
LOCKFILE_HEADER = (
    f"# This file is @generated by {NAME.upper()}\n"
    "# It is not intended for manual editing.\n"
)

# Download policy defaults; both can be overridden in the config file
DEFAULT_DOWNLOAD_CONCURRENCY = 5
DEFAULT_DOWNLOAD_RETRIES = 3
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

DEFAULT_RESOLVER_PYTHON = "python3"
DEFAULT_REPOSDIRS = ["/etc/yum.repos.d"]

# Exit statuses of the dnf resolver script
RESOLVER_EXIT_OK = 0
RESOLVER_EXIT_UNSATISFIABLE = 2

