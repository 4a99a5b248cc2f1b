#!/usr/bin/env python3

import click

from idlsync import __version__
from idlsync.commands.bootstrap import bootstrap_handler
from idlsync.commands.cache import cache_cmd
from idlsync.commands.config import config_cmd


@click.group()
@click.version_option(__version__)
def cli():
    """idlsync - Aggregate IDL files from many git repositories into one registry.

    Keeps a cached checkout of every configured remote, extracts their IDL
    files under deterministic names, and publishes the merged tree with a
    meta.json provenance record to an upstream repository.
    """
    pass


# Core commands
cli.add_command(bootstrap_handler, name='bootstrap')
cli.add_command(bootstrap_handler, name='sync')

# Command groups
cli.add_command(cache_cmd)
cli.add_command(config_cmd)


def main():
    cli()

if __name__ == "__main__":
    main()
