from pathlib import Path

import click

from rpmlocklib import resolver
from rpmlocklib.cli import CliContext, cli, click_coroutine, pass_cli_context
from rpmlocklib.cli.lock import print_updates
from rpmlocklib.downloader import Downloader
from rpmlocklib.format_util import green_prefix


@cli.command("fetch", short_help="Download and verify every locked package")
@click.argument("dest", type=click.Path(file_okay=False, path_type=Path))
@click.option("--locked", is_flag=True,
              help="Fail instead of resolving when the lockfile is missing or out of date")
@click.option("--concurrency", type=click.IntRange(min=1), default=None,
              help="Maximum number of parallel downloads (overrides the configuration)")
@pass_cli_context
@click_coroutine
async def fetch(ctx: CliContext, dest: Path, locked: bool, concurrency: int):
    """
    Download the packages pinned by the lockfile into DEST.

    Every file is checked against the digest recorded in the lockfile and, for repositories
    with gpgcheck enabled, against the repository's GPG keys. Files that fail verification
    are not left in DEST.
    """
    lockfile, updates = await resolver.ensure_lockfile(ctx.config, ctx.lockfile_path, locked=locked)
    if updates:
        print_updates(updates)
    result = await Downloader(ctx.config, dest, concurrency=concurrency).download(lockfile)
    for artifact in result.artifacts:
        green_prefix("Verified: ")
        click.echo(str(artifact.path))
    for local in result.local_packages:
        click.echo(f"Local package: {local.name}")
