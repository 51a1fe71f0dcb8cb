import click

from rpmlocklib.lockfile import ADDING, REMOVING, UPDATING, PackageUpdate

UPDATE_COLORS = {
    ADDING: "green",
    UPDATING: "yellow",
    REMOVING: "red",
}


def red_print(msg, file=None):
    """Print out a message in red text"""
    click.secho(msg, nl=True, bold=False, fg="red", file=file)


def green_prefix(msg, file=None):
    """Print out a message prefix in bold green letters, like for "Success: "
    messages"""
    click.secho(msg, nl=False, bold=True, fg="green", file=file)


def status_print(prefix, msg, color, file=None):
    """Print a bold, right aligned status word followed by a plain message, like "  Adding foo 1.0" """
    click.secho(f"{prefix:>12} ", nl=False, bold=True, fg=color, file=file)
    click.echo(msg, file=file)


def print_update(update: PackageUpdate, file=None):
    status_print(update.action, update.detail, UPDATE_COLORS.get(update.action, "white"), file=file)
