import sys

from rpmlocklib.cli import cli
from rpmlocklib.cli.fetch import fetch  # noqa: F401
from rpmlocklib.cli.lock import lock, update  # noqa: F401
from rpmlocklib.exceptions import RpmLockError, UnsatisfiableError
from rpmlocklib.format_util import red_print

# Exit status when the declared packages cannot be satisfied, so scripts can tell it apart
EXIT_UNSATISFIABLE = 2


def main():
    try:
        # pylint: disable=no-value-for-parameter
        cli(obj=None)
    except RpmLockError as ex:
        # Tool errors are printed without a stack trace
        red_print('rpmlock failed with error:\n' + str(ex), file=sys.stderr)
        sys.exit(EXIT_UNSATISFIABLE if isinstance(ex, UnsatisfiableError) else 1)


if __name__ == '__main__':
    main()
