# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""vmbox CLI package."""

from pathlib import Path
from typing import Optional

import click

from vmbox import __version__
from vmbox.utils.logging import configure_logging, log_startup_info


@click.group()
@click.version_option(version=__version__, prog_name="vmbox")
@click.option("--debug", is_flag=True, help="Verbose output (same as VMBOX_DEBUG=1)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/vmbox/config.yml)",
)
@click.option("--daemon", is_flag=True, help="Plain stderr logging for use under a supervisor")
@click.pass_context
def cli(ctx: click.Context, debug: bool, config_path: Optional[Path], daemon: bool):
    """vmbox - Run a QEMU VM in systemd-nspawn from a Docker image and etcd config."""
    configure_logging(debug=debug, daemon=daemon, force=True)
    log_startup_info()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# Register command modules
from vmbox.cli.commands import vm  # noqa: E402,F401


def main():
    """Main entry point."""
    cli()
