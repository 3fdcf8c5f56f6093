#!/usr/bin/env python3

import click

from ghrelease import __version__
from ghrelease.commands.install import install_handler
from ghrelease.commands.dist import dist_handler
from ghrelease.commands.config import config_cmd


@click.group()
@click.version_option(version=__version__)
def cli():
    """ghrelease - Install and publish prebuilt binaries via GitHub releases.

    `install` fetches the asset matching your platform from a release and
    falls back to building from source. `dist` builds every target,
    packages archives with checksums and reconciles the release.
    """
    pass


cli.add_command(install_handler, name='install')
cli.add_command(dist_handler, name='dist')
cli.add_command(config_cmd)


def main():
    cli()

if __name__ == "__main__":
    main()
