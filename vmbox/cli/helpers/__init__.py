# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Shared helpers for the vmbox CLI.

- utils.py: error handling and panels
- options.py: option decorators shared by commands

All helpers are re-exported here for convenience.
"""

from rich.console import Console

console = Console()

from vmbox.cli.helpers.utils import handle_errors, show_error_panel  # noqa: E402
from vmbox.cli.helpers.options import (  # noqa: E402
    launch_options,
    instance_option,
    settings_from_context,
    target_options,
)

__all__ = [
    "console",
    "handle_errors",
    "launch_options",
    "instance_option",
    "settings_from_context",
    "show_error_panel",
    "target_options",
]
