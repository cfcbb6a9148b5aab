# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""vmbox - Materialize a QEMU root filesystem from a Docker image and launch it in systemd-nspawn."""

__version__ = "0.1.0"
