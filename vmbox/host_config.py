# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Centralized host-side configuration for vmbox.

Settings come from ~/.config/vmbox/config.yml (or an explicit path), and
CLI flags override individual values. The result is a frozen
HostConfigModel that is passed explicitly to every component.
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from vmbox.models.host_config import HostConfigModel
from vmbox.paths import HostPaths
from vmbox.utils.logging import get_logger

logger = get_logger(__name__)

Settings = HostConfigModel

# Sections that feed the privileged sandbox argv; never replaced by defaults
STRICT_SECTIONS = frozenset({"sandbox"})


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class HostConfig:
    """Manages host-side configuration from ~/.config/vmbox/config.yml."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else HostPaths.config_file()
        self.model = self._load()

    def _load(self) -> HostConfigModel:
        """Load configuration from file.

        Unreadable files and errors outside the sandbox section fall back to
        defaults with a warning.

        Raises:
            pydantic.ValidationError: the sandbox section is invalid
        """
        if not self.config_path.exists():
            return HostConfigModel()

        try:
            with open(self.config_path) as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring unreadable config {self.config_path}: {e}")
            return HostConfigModel()

        if not isinstance(raw, dict):
            logger.warning(f"Ignoring config {self.config_path}: top level must be a mapping")
            return HostConfigModel()

        try:
            return HostConfigModel.model_validate(raw)
        except ValidationError as e:
            if any(err["loc"] and err["loc"][0] in STRICT_SECTIONS for err in e.errors()):
                raise
            logger.warning(f"Ignoring invalid config {self.config_path}, using defaults: {e}")
            return HostConfigModel()


def load_settings(
    config_path: Optional[Path] = None,
    *,
    target_path: Optional[str] = None,
    etcd_servers: Optional[str] = None,
    bridge_interface: Optional[str] = None,
    image: Optional[str] = None,
    capture_output: Optional[bool] = None,
) -> Settings:
    """Build the Settings for one invocation.

    File values are the base; any override that is not None wins.
    Raises pydantic.ValidationError if an override or the sandbox section
    is malformed.
    """
    base = HostConfig(config_path).model.model_dump()

    overrides: dict = {}
    if target_path is not None:
        overrides.setdefault("materialize", {})["target_path"] = str(target_path)
    if etcd_servers is not None:
        overrides.setdefault("etcd", {})["servers"] = etcd_servers
    if bridge_interface is not None:
        overrides.setdefault("sandbox", {})["bridge_interface"] = bridge_interface
    if image is not None:
        overrides.setdefault("docker", {})["image"] = image
    if capture_output is not None:
        overrides.setdefault("launch", {})["capture_output"] = capture_output

    return Settings.model_validate(_deep_merge(base, overrides))
