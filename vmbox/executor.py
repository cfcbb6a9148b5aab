# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Run a LaunchPlan as a child process and report how it exited."""

import subprocess
from dataclasses import dataclass
from typing import Optional

from vmbox.planner import LaunchPlan
from vmbox.utils.exceptions import SpawnFailed
from vmbox.utils.logging import get_logger

logger = get_logger(__name__)

# Grace period between SIGTERM and SIGKILL when interrupted
TERMINATE_TIMEOUT = 10.0


@dataclass(frozen=True)
class ExitStatus:
    """Exit code of the sandbox process, plus its output when captured."""

    returncode: int
    stdout: Optional[str] = None
    stderr: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class LaunchExecutor:
    """Starts the sandbox process and blocks until it exits.

    A failed launch is reported, never retried.
    """

    def __init__(self, capture_output: bool = False):
        self.capture_output = capture_output

    def execute(self, plan: LaunchPlan) -> ExitStatus:
        """Run plan.argv and wait for it.

        Raises:
            SpawnFailed: the binary is missing or not executable
        """
        pipe = subprocess.PIPE if self.capture_output else None
        logger.debug(f"Executing: {plan.command_line()}")
        try:
            proc = subprocess.Popen(
                list(plan.argv), stdout=pipe, stderr=pipe, text=True, errors="replace"
            )
        except OSError as e:
            raise SpawnFailed(plan.binary, e) from e

        try:
            stdout, stderr = proc.communicate()
        except KeyboardInterrupt:
            logger.warning("Interrupted, stopping VM sandbox")
            proc.terminate()
            try:
                proc.wait(timeout=TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            raise

        logger.debug(f"{plan.binary} exited with {proc.returncode}")
        return ExitStatus(returncode=proc.returncode, stdout=stdout, stderr=stderr)
