# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Click option groups shared by the vmbox commands."""

import click

from vmbox.host_config import Settings, load_settings

instance_option = click.option(
    "-i", "--instance", "instance", required=True, help="Instance id (etcd key segment)"
)


def target_options(func):
    """-t/--target, --image and --clean: what to materialize and where."""
    func = click.option(
        "--clean", is_flag=True, help="Remove an existing target before materializing"
    )(func)
    func = click.option(
        "--image", default=None, help="Image reference (default: ulexus/qemu:latest)"
    )(func)
    func = click.option(
        "-t",
        "--target",
        default=None,
        help="Target path for the qemu chroot (default: /var/lib/cycore/qemu)",
    )(func)
    return func


def launch_options(func):
    """--etcd-server and --bridge-interface."""
    func = click.option(
        "--bridge-interface", default=None, help="Host bridge for the VM NIC (default: public)"
    )(func)
    func = click.option(
        "--etcd-server",
        "etcd_servers",
        default=None,
        help="Comma-separated etcd endpoints (default: http://127.0.0.1:2379)",
    )(func)
    return func


def settings_from_context(ctx: click.Context, **overrides) -> Settings:
    """Load Settings from the group's --config plus per-command overrides."""
    config_path = (ctx.obj or {}).get("config_path")
    return load_settings(config_path, **overrides)
