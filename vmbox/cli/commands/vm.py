# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""VM commands - resolve config, materialize the root filesystem, plan and launch."""

import sys

import click
from rich.table import Table

from vmbox.cli import cli
from vmbox.cli.helpers import (
    console,
    handle_errors,
    instance_option,
    launch_options,
    settings_from_context,
    target_options,
)
from vmbox.launcher import Launcher
from vmbox.utils.logging import get_logger

logger = get_logger(__name__)


@cli.command()
@instance_option
@target_options
@launch_options
@click.option("--capture", is_flag=True, help="Capture VM output instead of attaching")
@click.pass_context
@handle_errors
def launch(ctx, instance, target, image, clean, etcd_servers, bridge_interface, capture):
    """Materialize the root filesystem and launch the VM.

    Exits with the sandbox process's exit code.

    Examples:
        vmbox launch -i vm42
        vmbox launch -i vm42 -t /srv/qemu --clean --bridge-interface br0
    """
    settings = settings_from_context(
        ctx,
        target_path=target,
        image=image,
        etcd_servers=etcd_servers,
        bridge_interface=bridge_interface,
        capture_output=True if capture else None,
    )
    status = Launcher(settings).run(instance, clean=clean)

    if status.stdout:
        click.echo(status.stdout, nl=False)
    if status.stderr:
        click.echo(status.stderr, nl=False, err=True)
    if status.ok:
        logger.success(f"Instance {instance} exited cleanly")
    else:
        logger.warning(f"Instance {instance} exited with {status.returncode}")
    sys.exit(status.returncode)


@cli.command()
@instance_option
@target_options
@launch_options
@click.pass_context
@handle_errors
def plan(ctx, instance, target, image, clean, etcd_servers, bridge_interface):
    """Prepare everything and print the launch command without running it."""
    settings = settings_from_context(
        ctx,
        target_path=target,
        image=image,
        etcd_servers=etcd_servers,
        bridge_interface=bridge_interface,
    )
    launch_plan = Launcher(settings).prepare(instance, clean=clean)
    click.echo(launch_plan.command_line())


@cli.command()
@instance_option
@click.option("--etcd-server", "etcd_servers", default=None, help="Comma-separated etcd endpoints")
@click.pass_context
@handle_errors
def resolve(ctx, instance, etcd_servers):
    """Show the launch configuration stored in etcd for an instance."""
    settings = settings_from_context(ctx, etcd_servers=etcd_servers)
    launcher = Launcher(settings)
    config = launcher.resolve(instance)

    table = Table(title=f"Instance {instance}")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_row(launcher.resolver.key_for(instance, "ram"), config.ram)
    table.add_row(launcher.resolver.key_for(instance, "mac"), config.mac)
    table.add_row(launcher.resolver.key_for(instance, "rbd"), config.block_device)
    table.add_row(launcher.resolver.key_for(instance, "spice_port"), config.spice_port)
    console.print(table)


@cli.command()
@target_options
@click.pass_context
@handle_errors
def materialize(ctx, target, image, clean):
    """Pull the image and extract its filesystem into the target path."""
    settings = settings_from_context(ctx, target_path=target, image=image)
    result = Launcher(settings).materialize(clean=clean)
    click.echo(str(result.source_path))
