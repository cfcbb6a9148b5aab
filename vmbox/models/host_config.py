# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT

"""Pydantic models for host configuration (~/.config/vmbox/config.yml)."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vmbox.paths import BinPaths, HostPaths, RootPaths


class EtcdConfig(BaseModel):
    """etcd coordination service settings."""

    model_config = ConfigDict(frozen=True)

    servers: List[str] = Field(default_factory=lambda: ["http://127.0.0.1:2379"])
    domain: str = "kvm"  # keys live under /<domain>/<instance>/
    timeout: Optional[float] = 5.0

    @field_validator("servers", mode="before")
    @classmethod
    def split_servers(cls, v):
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            v = v.split(",")
        return [s.strip() for s in v if s and s.strip()]

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = v.strip("/")
        if not v or "/" in v:
            raise ValueError("domain must be a single key segment")
        return v


class DockerConfig(BaseModel):
    """Docker daemon and image settings."""

    model_config = ConfigDict(frozen=True)

    url: Optional[str] = None  # None = docker.from_env()
    image: str = "ulexus/qemu:latest"
    pull_timeout: int = 600


class MaterializeConfig(BaseModel):
    """Root filesystem extraction settings."""

    model_config = ConfigDict(frozen=True)

    target_path: str = HostPaths.DEFAULT_TARGET
    extract_timeout: float = 1800.0


class BindMount(BaseModel):
    """Host directory bound into the sandbox."""

    model_config = ConfigDict(frozen=True)

    host: str
    container: str

    def as_arg(self) -> str:
        return f"{self.host}:{self.container}"


class SandboxPolicy(BaseModel):
    """Static sandbox and QEMU policy baked into every launch plan."""

    model_config = ConfigDict(frozen=True)

    nspawn: str = BinPaths.NSPAWN
    share_system: bool = True
    capabilities: List[str] = Field(default_factory=lambda: ["all"])
    binds: List[BindMount] = Field(
        default_factory=lambda: [
            BindMount(host=HostPaths.CEPH_CONFIG_DIR, container=HostPaths.CEPH_CONFIG_DIR)
        ]
    )
    bridge_interface: str = "public"
    bridge_env: str = "BRIDGE_IF"
    entrypoint: List[str] = Field(default_factory=lambda: [BinPaths.BASH, RootPaths.ENTRYPOINT])
    vga: str = "qxl"
    keyboard: str = "en-us"
    cpu: str = "qemu64"
    spice_addr: str = "127.0.0.1"

    @field_validator("binds", mode="before")
    @classmethod
    def parse_bind_strings(cls, v):
        """Allow "host:container" shorthand; a bare path binds to itself."""
        parsed = []
        for item in v or []:
            if isinstance(item, str):
                host, _, container = item.partition(":")
                item = {"host": host, "container": container or host}
            parsed.append(item)
        return parsed


class LaunchSettings(BaseModel):
    """Launch executor settings."""

    model_config = ConfigDict(frozen=True)

    capture_output: bool = False


class HostConfigModel(BaseModel):
    """Root model for config.yml."""

    model_config = ConfigDict(frozen=True)

    version: str = "1.0"
    etcd: EtcdConfig = Field(default_factory=EtcdConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    materialize: MaterializeConfig = Field(default_factory=MaterializeConfig)
    sandbox: SandboxPolicy = Field(default_factory=SandboxPolicy)
    launch: LaunchSettings = Field(default_factory=LaunchSettings)
