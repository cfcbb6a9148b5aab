# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Exception hierarchy for vmbox.

Components raise these; only the CLI's handle_errors turns them into an
exit code. Every error carries an optional hint shown under the message.
"""

from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from vmbox.image import MaterializedImage


class VMBoxError(Exception):
    """Base class for all vmbox errors."""

    title = "Error"

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


# ========== Configuration ==========


class ConfigError(VMBoxError):
    """Instance configuration could not be resolved."""

    title = "Configuration Error"


class InvalidInstance(ConfigError):
    """Instance identifier is empty or not a single key segment."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(
            f"Invalid instance id {instance_id!r}",
            hint="Pass a non-empty id without '/' via -i/--instance",
        )


class _KeyProblemError(ConfigError):
    """Shared shape for MissingKey and EmptyValue.

    ``problems`` lists every (key, reason) found in one resolve pass, where
    reason is "missing" or "empty".
    """

    reason = ""

    def __init__(self, problems: Sequence[Tuple[str, str]]):
        self.problems: List[Tuple[str, str]] = list(problems)
        self.keys = [key for key, reason in self.problems if reason == self.reason]
        lines = [f"{key}: {reason}" for key, reason in self.problems]
        super().__init__(
            "etcd configuration incomplete:\n  " + "\n  ".join(lines),
            hint="Set the keys with: etcdctl put <key> <value>",
        )


class MissingKey(_KeyProblemError):
    """One or more required keys do not exist in etcd."""

    reason = "missing"


class EmptyValue(_KeyProblemError):
    """One or more required keys exist but hold an empty string."""

    reason = "empty"


class StoreUnavailable(ConfigError):
    """No etcd endpoint answered."""

    def __init__(self, key: str, endpoints: Sequence[str], cause: Optional[BaseException] = None):
        self.key = key
        self.endpoints = list(endpoints)
        message = f"Failed to get {key} from etcd ({', '.join(self.endpoints)})"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message, hint="Check --etcd-server and that etcd is running")


# ========== Materialization ==========


class RegistryError(VMBoxError):
    """A Docker daemon/registry call failed.

    Raised by the registry adapter; ImageMaterializer translates it into the
    matching MaterializationError.
    """


class MaterializationError(VMBoxError):
    """The image could not be materialized into the target directory."""

    title = "Materialization Error"

    def __init__(
        self,
        message: str,
        image_ref: str,
        target_path: Path,
        hint: Optional[str] = None,
    ):
        super().__init__(message, hint=hint)
        self.image_ref = image_ref
        self.target_path = Path(target_path)


class TargetNotEmpty(MaterializationError):
    """Target directory exists and has contents."""

    def __init__(self, image_ref: str, target_path: Path):
        super().__init__(
            f"Target {target_path} is not empty",
            image_ref,
            target_path,
            hint="Remove it first or pass --clean",
        )


class PullFailed(MaterializationError):
    """Pulling the image from the registry failed."""


class ArtifactCreateFailed(MaterializationError):
    """Creating the ephemeral export container failed."""


class ExtractionFailed(MaterializationError):
    """Export or tar extraction failed; the target has been removed.

    ``image`` is the not-ready MaterializedImage for the failed target.
    """

    def __init__(
        self,
        message: str,
        image_ref: str,
        target_path: Path,
        image: "MaterializedImage",
        stderr: str = "",
    ):
        super().__init__(message, image_ref, target_path)
        self.image = image
        self.stderr = stderr


# ========== Planning ==========


class PlanError(VMBoxError):
    """A launch plan could not be built."""

    title = "Plan Error"


class NotReady(PlanError):
    """The materialized image is not ready."""

    def __init__(self, source_path: Path):
        self.source_path = source_path
        super().__init__(f"Root filesystem at {source_path} is not ready")


class InvalidConfig(PlanError):
    """One or more launch values failed their format check.

    ``fields`` maps field name to the rejected value.
    """

    def __init__(self, fields: dict):
        self.fields = dict(fields)
        lines = [f"{name}={value!r}" for name, value in self.fields.items()]
        super().__init__("Invalid launch configuration: " + ", ".join(lines))


# ========== Launch ==========


class LaunchError(VMBoxError):
    """The sandbox process could not be launched."""

    title = "Launch Error"


class SpawnFailed(LaunchError):
    """The sandbox binary could not be started."""

    def __init__(self, binary: str, cause: OSError):
        self.binary = binary
        self.cause = cause
        super().__init__(
            f"Failed to start {binary}: {cause}",
            hint="Is systemd-container installed and are you root?",
        )
