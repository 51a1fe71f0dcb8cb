import asyncio
import logging
import sys
from functools import cached_property, update_wrapper
from pathlib import Path
from typing import Optional

import click

from rpmlocklib import __version__, constants
from rpmlocklib.config import Config
from rpmlocklib.telemetry import initialize_telemetry


class CliContext:
    """State shared by every subcommand: where the configuration and the lockfile live"""

    def __init__(self, config_path: Path, lockfile_path: Optional[Path] = None):
        self.config_path = config_path
        self.lockfile_path = lockfile_path or config_path.parent / constants.DEFAULT_LOCKFILE_NAME

    @cached_property
    def config(self) -> Config:
        return Config.load(self.config_path)


pass_cli_context = click.make_pass_decorator(CliContext)


def click_coroutine(f):
    """ A wrapper to allow to use asyncio with click.
    https://github.com/pallets/click/issues/85
    """
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return update_wrapper(wrapper, f)


def print_version(ctx, param, value):
    if not value or ctx.resilient_parsing:
        return
    click.echo('rpmlock v{}'.format(__version__))
    click.echo('Python v{}'.format(sys.version))
    ctx.exit()


@click.group(context_settings=dict(help_option_names=['-h', '--help']))
@click.option('--version', is_flag=True, callback=print_version,
              expose_value=False, is_eager=True,
              help="Print version information and quit")
@click.option("--config", "-f", "config_path", metavar='PATH', default=constants.DEFAULT_CONFIG_NAME,
              type=click.Path(dir_okay=False, path_type=Path), show_default=True,
              help="Configuration file declaring repositories and packages")
@click.option("--lockfile", "lockfile_path", metavar='PATH', default=None,
              type=click.Path(dir_okay=False, path_type=Path),
              help=f"Lockfile to read and write ('{constants.DEFAULT_LOCKFILE_NAME}' next to the configuration by default)")
@click.option("--verbosity", "-v", count=True,
              help="[MULTIPLE] increase output verbosity")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, lockfile_path: Optional[Path], verbosity: int):
    """Resolve, pin and verify the RPMs of a container image layer"""
    # configure logging
    if not verbosity:
        logging.basicConfig(level=logging.WARNING)
    elif verbosity == 1:
        logging.basicConfig(level=logging.INFO)
    elif verbosity >= 2:
        logging.basicConfig(level=logging.DEBUG)
        logging.getLogger("asyncio").setLevel(logging.INFO)
    initialize_telemetry()
    ctx.obj = CliContext(config_path, lockfile_path)
