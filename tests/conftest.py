# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Pytest fixtures for vmbox tests.

Etcd and Docker are replaced by in-memory fakes; extraction runs the real
`tar` binary against archives built with tarfile.
"""

import io
import os
import shutil
import tarfile
import tempfile
import threading
import uuid
from pathlib import Path

import pytest

# Keep test runs out of ~/.local/share/vmbox/logs
os.environ.setdefault("VMBOX_LOG_FILE", str(Path(tempfile.gettempdir()) / "vmbox-tests.log"))

from vmbox.config_resolver import LaunchConfig  # noqa: E402
from vmbox.host_config import load_settings  # noqa: E402
from vmbox.image import MaterializedImage  # noqa: E402
from vmbox.models.host_config import SandboxPolicy  # noqa: E402
from vmbox.utils.exceptions import RegistryError  # noqa: E402

VM42 = {
    "/kvm/vm42/ram": "4096",
    "/kvm/vm42/mac": "52:54:00:12:34:56",
    "/kvm/vm42/rbd": "pool/vm42",
    "/kvm/vm42/spice_port": "5901",
}


def build_tar(files: dict) -> bytes:
    """Build an in-memory tar archive from {path: bytes}; "dir/" keys make directories."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, data in files.items():
            if name.endswith("/"):
                info = tarfile.TarInfo(name.rstrip("/"))
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
                continue
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class FakeStore:
    """KeyValueStore over a dict; records every key read."""

    def __init__(self, data=None):
        self.data = dict(data or {})
        self.calls = []

    def get(self, key):
        self.calls.append(key)
        if key in self.data:
            return self.data[key], True
        return None, False


class FakeRegistry:
    """Registry that exports a fixed archive and records every call."""

    def __init__(
        self,
        archive: bytes = b"",
        pull_error: str = None,
        create_error: str = None,
        export_error: Exception = None,
        remove_error: str = None,
        stall: threading.Event = None,
        chunk_size: int = 4096,
    ):
        self.archive = archive
        self.pull_error = pull_error
        self.create_error = create_error
        self.export_error = export_error
        self.remove_error = remove_error
        self.stall = stall
        self.chunk_size = chunk_size
        self.pulled = []
        self.created = []
        self.exported = []
        self.removed = []

    def pull(self, repository, tag):
        if self.pull_error:
            raise RegistryError(self.pull_error)
        self.pulled.append((repository, tag))

    def create_ephemeral(self, image, name):
        if self.create_error:
            raise RegistryError(self.create_error)
        container_id = uuid.uuid4().hex
        self.created.append((image, name, container_id))
        return container_id

    def export_filesystem(self, container_id, stream):
        self.exported.append(container_id)
        if self.stall is not None:
            self.stall.wait(timeout=10)
        for offset in range(0, len(self.archive), self.chunk_size):
            stream.write(self.archive[offset : offset + self.chunk_size])
        if self.export_error is not None:
            raise self.export_error

    def remove(self, container_id, force=True):
        self.removed.append((container_id, force))
        if self.remove_error:
            raise RegistryError(self.remove_error)


@pytest.fixture
def tar_available():
    if shutil.which("tar") is None:
        pytest.skip("tar not available")


@pytest.fixture
def rootfs_archive():
    return build_tar(
        {
            "etc/": b"",
            "etc/hostname": b"qemu\n",
            "usr/local/bin/entrypoint.sh": b"#!/bin/bash\nexec qemu-system-x86_64 \"$@\"\n",
        }
    )


@pytest.fixture
def store():
    return FakeStore(VM42)


@pytest.fixture
def target(tmp_path):
    return tmp_path / "qemu"


@pytest.fixture
def settings(tmp_path, target):
    return load_settings(tmp_path / "no-config.yml", target_path=str(target))


@pytest.fixture
def policy():
    return SandboxPolicy()


@pytest.fixture
def vm42_config():
    return LaunchConfig(
        ram="4096", mac="52:54:00:12:34:56", block_device="pool/vm42", spice_port="5901"
    )


@pytest.fixture
def ready_image():
    return MaterializedImage(source_path=Path("/var/lib/cycore/qemu"), ready=True)
