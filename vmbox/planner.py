# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Build the systemd-nspawn invocation for a VM.

Planning is pure: it only validates values and assembles an argument
vector, so every rule here is testable without Docker, etcd or root.
"""

import re
import shlex
from dataclasses import dataclass
from typing import Dict, List, Tuple

from vmbox.config_resolver import LaunchConfig
from vmbox.image import MaterializedImage
from vmbox.models.host_config import SandboxPolicy
from vmbox.utils.exceptions import InvalidConfig, NotReady

# QEMU -m accepts a plain number (MiB) or a number with a size suffix
RAM_PATTERN = re.compile(r"[1-9][0-9]*[KMGT]?")
MAC_PATTERN = re.compile(r"[0-9A-Fa-f]{2}(:[0-9A-Fa-f]{2}){5}")
# pool[/namespace]/image[@snap]; no ',' or ':' so the value can't add -drive options
RBD_PATTERN = re.compile(r"[A-Za-z0-9_.-]+(/[A-Za-z0-9_.-]+){1,2}(@[A-Za-z0-9_.-]+)?")
PORT_PATTERN = re.compile(r"[0-9]{1,5}")
IFNAME_PATTERN = re.compile(r"[A-Za-z0-9_.-]{1,15}")


@dataclass(frozen=True)
class LaunchPlan:
    """A validated, ready-to-run sandbox invocation."""

    argv: Tuple[str, ...]
    image: MaterializedImage
    config: LaunchConfig
    policy: SandboxPolicy

    @property
    def binary(self) -> str:
        return self.argv[0]

    def command_line(self) -> str:
        """Shell-quoted rendering of argv, for display only."""
        return shlex.join(self.argv)


def _valid_port(value: str) -> bool:
    return bool(PORT_PATTERN.fullmatch(value)) and 1 <= int(value) <= 65535


def validate_config(config: LaunchConfig, policy: SandboxPolicy) -> None:
    """Check every launch value, reporting all failures at once.

    Raises:
        InvalidConfig: mapping of each bad field to its value
    """
    bad: Dict[str, str] = {}
    if not RAM_PATTERN.fullmatch(config.ram):
        bad["ram"] = config.ram
    if not MAC_PATTERN.fullmatch(config.mac):
        bad["mac"] = config.mac
    if not RBD_PATTERN.fullmatch(config.block_device):
        bad["block_device"] = config.block_device
    if not _valid_port(config.spice_port):
        bad["spice_port"] = config.spice_port
    if not IFNAME_PATTERN.fullmatch(policy.bridge_interface):
        bad["bridge_interface"] = policy.bridge_interface
    if bad:
        raise InvalidConfig(bad)


class LaunchPlanner:
    """Turns a ready root filesystem plus instance config into a LaunchPlan."""

    def plan(
        self,
        image: MaterializedImage,
        config: LaunchConfig,
        policy: SandboxPolicy,
    ) -> LaunchPlan:
        """Build the plan.

        Raises:
            NotReady: image.ready is False
            InvalidConfig: a config or bridge value failed its format check
        """
        if not image.ready:
            raise NotReady(image.source_path)
        validate_config(config, policy)

        argv = self._sandbox_args(image, policy) + self._qemu_args(config, policy)
        return LaunchPlan(argv=tuple(argv), image=image, config=config, policy=policy)

    def _sandbox_args(self, image: MaterializedImage, policy: SandboxPolicy) -> List[str]:
        args = [policy.nspawn, "-D", str(image.source_path)]
        if policy.share_system:
            args.append("--share-system")
        if policy.capabilities:
            args.append(f"--capability={','.join(policy.capabilities)}")
        for bind in policy.binds:
            args.extend(["--bind", bind.as_arg()])
        args.append(f"--setenv={policy.bridge_env}={policy.bridge_interface}")
        args.extend(policy.entrypoint)
        return args

    def _qemu_args(self, config: LaunchConfig, policy: SandboxPolicy) -> List[str]:
        bridge = policy.bridge_interface
        return [
            "-vga", policy.vga,
            "-spice", f"port={config.spice_port},addr={policy.spice_addr},disable-ticketing",
            "-k", policy.keyboard,
            "-m", config.ram,
            "-cpu", policy.cpu,
            "-netdev", f"bridge,br={bridge},id=net0",
            "-device", f"virtio-net,netdev=net0,mac={config.mac}",
            "-drive", f"format=rbd,file=rbd:{config.block_device},cache=writeback,if=virtio",
        ]
