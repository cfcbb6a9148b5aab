# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Tests for launch plan validation and argument assembly."""

import dataclasses
from pathlib import Path

import pytest

from vmbox.config_resolver import LaunchConfig
from vmbox.image import MaterializedImage
from vmbox.models.host_config import SandboxPolicy
from vmbox.planner import LaunchPlanner
from vmbox.utils.exceptions import InvalidConfig, NotReady, PlanError


def _after(argv, flag):
    """Return the value following the first occurrence of flag."""
    return argv[argv.index(flag) + 1]


def _with(config, **changes):
    return dataclasses.replace(config, **changes)


class TestPlanArguments:
    """Argument vector contents and order."""

    def test_vm42_scenario(self, ready_image, vm42_config, policy):
        plan = LaunchPlanner().plan(ready_image, vm42_config, policy)
        argv = list(plan.argv)

        assert _after(argv, "-m") == "4096"
        assert "virtio-net,netdev=net0,mac=52:54:00:12:34:56" in argv
        assert any("rbd:pool/vm42" in arg for arg in argv)
        assert "port=5901" in _after(argv, "-spice")

    def test_full_default_argv(self, ready_image, vm42_config, policy):
        plan = LaunchPlanner().plan(ready_image, vm42_config, policy)

        assert plan.argv == (
            "/usr/bin/systemd-nspawn",
            "-D", "/var/lib/cycore/qemu",
            "--share-system",
            "--capability=all",
            "--bind", "/etc/ceph:/etc/ceph",
            "--setenv=BRIDGE_IF=public",
            "/bin/bash", "/usr/local/bin/entrypoint.sh",
            "-vga", "qxl",
            "-spice", "port=5901,addr=127.0.0.1,disable-ticketing",
            "-k", "en-us",
            "-m", "4096",
            "-cpu", "qemu64",
            "-netdev", "bridge,br=public,id=net0",
            "-device", "virtio-net,netdev=net0,mac=52:54:00:12:34:56",
            "-drive", "format=rbd,file=rbd:pool/vm42,cache=writeback,if=virtio",
        )

    def test_bridge_interface_flows_into_env_and_netdev(self, ready_image, vm42_config):
        policy = SandboxPolicy(bridge_interface="br0")

        argv = list(LaunchPlanner().plan(ready_image, vm42_config, policy).argv)

        assert "--setenv=BRIDGE_IF=br0" in argv
        assert _after(argv, "-netdev") == "bridge,br=br0,id=net0"

    def test_policy_variations(self, ready_image, vm42_config):
        policy = SandboxPolicy(
            share_system=False,
            capabilities=["CAP_NET_ADMIN", "CAP_SYS_ADMIN"],
            binds=["/etc/ceph", "/var/run/ceph:/run/ceph"],
        )

        argv = list(LaunchPlanner().plan(ready_image, vm42_config, policy).argv)

        assert "--share-system" not in argv
        assert "--capability=CAP_NET_ADMIN,CAP_SYS_ADMIN" in argv
        binds = [argv[i + 1] for i, arg in enumerate(argv) if arg == "--bind"]
        assert binds == ["/etc/ceph:/etc/ceph", "/var/run/ceph:/run/ceph"]

    def test_no_capabilities_omits_flag(self, ready_image, vm42_config):
        policy = SandboxPolicy(capabilities=[])

        argv = LaunchPlanner().plan(ready_image, vm42_config, policy).argv

        assert not any(arg.startswith("--capability") for arg in argv)

    def test_sandbox_args_precede_qemu_args(self, ready_image, vm42_config, policy):
        argv = list(LaunchPlanner().plan(ready_image, vm42_config, policy).argv)

        assert argv.index("--setenv=BRIDGE_IF=public") < argv.index("/usr/local/bin/entrypoint.sh")
        assert argv.index("/usr/local/bin/entrypoint.sh") < argv.index("-vga")

    def test_plan_keeps_its_inputs_and_is_frozen(self, ready_image, vm42_config, policy):
        plan = LaunchPlanner().plan(ready_image, vm42_config, policy)

        assert plan.image is ready_image
        assert plan.config is vm42_config
        assert plan.binary == "/usr/bin/systemd-nspawn"
        with pytest.raises(dataclasses.FrozenInstanceError):
            plan.argv = ()

    def test_command_line_is_shell_quoted(self, vm42_config, policy):
        image = MaterializedImage(source_path=Path("/srv/qemu root"), ready=True)

        line = LaunchPlanner().plan(image, vm42_config, policy).command_line()

        assert "-D '/srv/qemu root'" in line


class TestPlanValidation:
    """Readiness and format checks."""

    def test_not_ready_image(self, vm42_config, policy):
        image = MaterializedImage(source_path=Path("/var/lib/cycore/qemu"), ready=False)

        with pytest.raises(NotReady):
            LaunchPlanner().plan(image, vm42_config, policy)

    def test_not_ready_is_checked_first(self, vm42_config, policy):
        image = MaterializedImage(source_path=Path("/x"), ready=False)

        with pytest.raises(NotReady):
            LaunchPlanner().plan(image, _with(vm42_config, spice_port="abc"), policy)

    @pytest.mark.parametrize("port", ["5901", "1", "65535"])
    def test_numeric_spice_port_accepted(self, ready_image, vm42_config, policy, port):
        plan = LaunchPlanner().plan(ready_image, _with(vm42_config, spice_port=port), policy)

        assert f"port={port}," in _after(list(plan.argv), "-spice")

    @pytest.mark.parametrize(
        "port", ["abc", "59o1", "", "0", "65536", "-1", " 5901", "5901\n", "5901,x=1"]
    )
    def test_bad_spice_port_rejected(self, ready_image, vm42_config, policy, port):
        with pytest.raises(InvalidConfig) as exc_info:
            LaunchPlanner().plan(ready_image, _with(vm42_config, spice_port=port), policy)

        assert exc_info.value.fields == {"spice_port": port}

    @pytest.mark.parametrize("mac", ["52:54:00:AB:cd:ef", "00:00:00:00:00:00"])
    def test_valid_mac(self, ready_image, vm42_config, policy, mac):
        LaunchPlanner().plan(ready_image, _with(vm42_config, mac=mac), policy)

    @pytest.mark.parametrize(
        "mac", ["52:54:00:12:34", "52-54-00-12-34-56", "52:54:00:12:34:5g", "52:54:00:12:34:56,x"]
    )
    def test_bad_mac(self, ready_image, vm42_config, policy, mac):
        with pytest.raises(InvalidConfig) as exc_info:
            LaunchPlanner().plan(ready_image, _with(vm42_config, mac=mac), policy)

        assert "mac" in exc_info.value.fields

    @pytest.mark.parametrize("ram", ["4096", "512M", "4G", "1T"])
    def test_valid_ram(self, ready_image, vm42_config, policy, ram):
        plan = LaunchPlanner().plan(ready_image, _with(vm42_config, ram=ram), policy)

        assert _after(list(plan.argv), "-m") == ram

    @pytest.mark.parametrize("ram", ["0", "-1", "4 GB", "4GB", "lots", "4096,slots=2"])
    def test_bad_ram(self, ready_image, vm42_config, policy, ram):
        with pytest.raises(InvalidConfig) as exc_info:
            LaunchPlanner().plan(ready_image, _with(vm42_config, ram=ram), policy)

        assert "ram" in exc_info.value.fields

    @pytest.mark.parametrize("ref", ["pool/vm42", "rbd/ns/vm-42", "pool/vm42@snap1"])
    def test_valid_block_device(self, ready_image, vm42_config, policy, ref):
        LaunchPlanner().plan(ready_image, _with(vm42_config, block_device=ref), policy)

    @pytest.mark.parametrize(
        "ref", ["vm42", "pool/vm42,file=/etc/shadow", "pool/vm42:conf=/tmp/x", "pool//vm42"]
    )
    def test_bad_block_device(self, ready_image, vm42_config, policy, ref):
        with pytest.raises(InvalidConfig) as exc_info:
            LaunchPlanner().plan(ready_image, _with(vm42_config, block_device=ref), policy)

        assert "block_device" in exc_info.value.fields

    @pytest.mark.parametrize("bridge", ["br0,id=x", "a-very-long-bridge-name", ""])
    def test_bad_bridge_interface(self, ready_image, vm42_config, bridge):
        with pytest.raises(InvalidConfig) as exc_info:
            LaunchPlanner().plan(ready_image, vm42_config, SandboxPolicy(bridge_interface=bridge))

        assert "bridge_interface" in exc_info.value.fields

    def test_all_bad_fields_reported_together(self, ready_image, policy):
        config = LaunchConfig(ram="x", mac="y", block_device="z", spice_port="w")

        with pytest.raises(PlanError) as exc_info:
            LaunchPlanner().plan(ready_image, config, policy)

        assert set(exc_info.value.fields) == {"ram", "mac", "block_device", "spice_port"}
