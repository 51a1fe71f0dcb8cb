import sys
from importlib.metadata import PackageNotFoundError, version
from typing import cast

if sys.version_info < (3, 10):
    sys.exit('Sorry, Python < 3.10 is not supported.')

__version__ = "0.0.0"

try:
    __version__ = cast(str, version("rpmlock"))
except PackageNotFoundError:
    # package is not installed
    pass
