import click

from rpmlocklib import resolver
from rpmlocklib.cli import CliContext, cli, click_coroutine, pass_cli_context
from rpmlocklib.format_util import green_prefix, print_update


def print_updates(updates):
    if not updates:
        click.echo("No package changes")
    for update in updates:
        print_update(update)


@cli.command("update", short_help="Resolve the configuration again and rewrite the lockfile")
@pass_cli_context
@click_coroutine
async def update(ctx: CliContext):
    """
    Resolve every declared package spec against the current repository metadata and replace the
    lockfile, even if the existing one still matches the configuration. Version changes relative
    to the replaced lockfile are printed.
    """
    _, updates = await resolver.update_lockfile(ctx.config, ctx.lockfile_path)
    print_updates(updates)
    green_prefix("Wrote: ")
    click.echo(str(ctx.lockfile_path))


@cli.command("lock", short_help="Create the lockfile, or refresh it if the configuration changed")
@click.option("--locked", is_flag=True,
              help="Fail instead of resolving when the lockfile is missing or out of date")
@pass_cli_context
@click_coroutine
async def lock(ctx: CliContext, locked: bool):
    """
    Make sure the lockfile matches the configuration.

    An existing lockfile is kept as long as the package specs, the global GPG keys and the
    requirements of local RPMs are unchanged.
    """
    _, updates = await resolver.ensure_lockfile(ctx.config, ctx.lockfile_path, locked=locked)
    print_updates(updates)
    green_prefix("Lockfile: ")
    click.echo(str(ctx.lockfile_path))
