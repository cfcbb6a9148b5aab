# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Centralized path definitions for vmbox.

Paths are organized by context:

- HostPaths: Paths on the host machine (where the vmbox CLI runs)
- BinPaths: Executables vmbox spawns on the host
- RootPaths: Paths inside the materialized QEMU root filesystem

Usage:
    from vmbox.paths import HostPaths, BinPaths, RootPaths

    config_file = HostPaths.config_file()
    nspawn = BinPaths.NSPAWN
"""

from pathlib import Path


class HostPaths:
    """Paths on the host machine where vmbox runs."""

    # Default chroot for the qemu image
    DEFAULT_TARGET = "/var/lib/cycore/qemu"

    # Ceph keyring/config needed by the rbd block driver inside the sandbox
    CEPH_CONFIG_DIR = "/etc/ceph"

    @staticmethod
    def config_dir() -> Path:
        """~/.config/vmbox/"""
        return Path.home() / ".config" / "vmbox"

    @staticmethod
    def config_file() -> Path:
        """~/.config/vmbox/config.yml"""
        return HostPaths.config_dir() / "config.yml"

    @staticmethod
    def data_dir() -> Path:
        """~/.local/share/vmbox/"""
        return Path.home() / ".local" / "share" / "vmbox"

    @staticmethod
    def log_dir() -> Path:
        """~/.local/share/vmbox/logs/"""
        return HostPaths.data_dir() / "logs"


class BinPaths:
    """Host executables."""

    NSPAWN = "/usr/bin/systemd-nspawn"
    TAR = "tar"
    BASH = "/bin/bash"
    TRUE = "/bin/true"


class RootPaths:
    """Paths inside the materialized root filesystem."""

    ENTRYPOINT = "/usr/local/bin/entrypoint.sh"
