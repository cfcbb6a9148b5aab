# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Utility functions for CLI helpers."""

import functools
import sys
from typing import Callable, Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from vmbox.utils.exceptions import VMBoxError
from vmbox.utils.logging import get_logger

_console = Console(stderr=True)
logger = get_logger(__name__)


def show_error_panel(title: str, message: str, hint: Optional[str] = None) -> None:
    """Display a formatted error panel.

    Args:
        title: Panel title (shown in red)
        message: Main error message
        hint: Optional hint text (shown with blue "Hint:" prefix)
    """
    content = message
    if hint:
        content += f"\n\n[blue]Hint:[/blue] {hint}"
    _console.print(Panel(content, title=f"[red]{title}[/red]", border_style="red"))


def handle_errors(func: Callable) -> Callable:
    """Decorator that wraps CLI commands with standard error handling.

    This is the only place vmbox decides to exit on an error:
    - VMBoxError: panel titled by the error family, with its hint
    - pydantic ValidationError: bad option/config value
    - ClickException: left to click
    - Other exceptions: generic error panel

    Every handled error exits with code 1.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SystemExit:
            raise
        except click.ClickException:
            raise
        except KeyboardInterrupt:
            _console.print("[yellow]Interrupted[/yellow]")
            sys.exit(130)
        except VMBoxError as exc:
            logger.error(f"{exc.title}: {exc}", console_output=False)
            # Messages may contain user values; don't let Rich parse them as markup
            show_error_panel(exc.title, escape(str(exc)), exc.hint)
            sys.exit(1)
        except ValidationError as exc:
            show_error_panel("Invalid Configuration", escape(str(exc)))
            sys.exit(1)
        except Exception as exc:
            logger.error("Unexpected error", exc=exc, console_output=False)
            show_error_panel("Error", escape(str(exc)))
            sys.exit(1)

    return wrapper
