# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Materialize a Docker image's filesystem into a local directory.

The image is pulled, an ephemeral (never started) container is created from
it, and the container's filesystem is exported as a tar stream straight into
a local `tar -x` process. The export runs in a daemon thread writing into
tar's stdin pipe, so the archive is never held in memory: the pipe blocks the
exporter when tar falls behind and tar blocks when the export stalls.

The target directory must be absent or empty. On any extraction failure it is
removed again so the next attempt starts clean.
"""

import shutil
import subprocess
import tempfile
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Protocol, Tuple

import docker
import requests
from docker.utils import parse_repository_tag

from vmbox.paths import BinPaths
from vmbox.utils.exceptions import (
    ArtifactCreateFailed,
    ExtractionFailed,
    PullFailed,
    RegistryError,
    TargetNotEmpty,
)
from vmbox.utils.logging import get_logger

logger = get_logger(__name__)

EPHEMERAL_PREFIX = "vmbox-export-"
EXPORT_CHUNK_SIZE = 1024 * 1024
STDERR_TAIL = 2000


@dataclass(frozen=True)
class MaterializedImage:
    """A root filesystem directory and whether it is fully extracted."""

    source_path: Path
    ready: bool


class Registry(Protocol):
    def pull(self, repository: str, tag: str) -> None: ...

    def create_ephemeral(self, image: str, name: str) -> str: ...

    def export_filesystem(self, container_id: str, stream: BinaryIO) -> None: ...

    def remove(self, container_id: str, force: bool = True) -> None: ...


class DockerRegistry:
    """Registry backed by the local Docker daemon.

    The client is created on first use so that a missing daemon surfaces as a
    PullFailed from materialize() rather than at construction.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None, client=None):
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                if self.base_url:
                    self._client = docker.DockerClient(base_url=self.base_url, timeout=self.timeout)
                else:
                    self._client = docker.from_env(timeout=self.timeout)
            except docker.errors.DockerException as e:
                raise RegistryError(f"Could not connect to Docker: {e}") from e
        return self._client

    def pull(self, repository: str, tag: str) -> None:
        try:
            self.client.images.pull(repository, tag=tag)
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise RegistryError(str(e)) from e

    def create_ephemeral(self, image: str, name: str) -> str:
        try:
            container = self.client.containers.create(
                image, entrypoint=[BinPaths.TRUE], name=name
            )
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise RegistryError(str(e)) from e
        return container.id

    def export_filesystem(self, container_id: str, stream: BinaryIO) -> None:
        """Write the container's filesystem tar into stream, chunk by chunk."""
        try:
            container = self.client.containers.get(container_id)
            for chunk in container.export(chunk_size=EXPORT_CHUNK_SIZE):
                stream.write(chunk)
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise RegistryError(str(e)) from e

    def remove(self, container_id: str, force: bool = True) -> None:
        try:
            self.client.api.remove_container(container_id, force=force)
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise RegistryError(str(e)) from e


def split_image_ref(image_ref: str) -> Tuple[str, str]:
    """Split "repo[:tag]" or "repo@digest" into (repository, tag-or-digest)."""
    repository, tag = parse_repository_tag(image_ref)
    return repository, tag or "latest"


def join_image_ref(repository: str, tag: str) -> str:
    """Inverse of split_image_ref; digests join with '@'."""
    separator = "@" if ":" in tag else ":"
    return f"{repository}{separator}{tag}"


def clean_target(target_path: Path) -> None:
    """Remove target_path entirely so it satisfies the absent-or-empty rule."""
    target = Path(target_path)
    if target.resolve() == Path("/"):
        raise ValueError("refusing to remove /")
    if target.is_dir() and not target.is_symlink():
        shutil.rmtree(target)
    elif target.exists() or target.is_symlink():
        target.unlink()


class ImageMaterializer:
    """Pulls an image and extracts its filesystem into a target directory."""

    # How long to wait for the export thread once tar has exited
    export_join_timeout = 10.0

    def __init__(
        self,
        registry: Registry,
        extract_timeout: Optional[float] = None,
        tar_binary: str = BinPaths.TAR,
    ):
        self.registry = registry
        self.extract_timeout = extract_timeout
        self.tar_binary = tar_binary
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None

    def cancel(self) -> None:
        """Kill the running extraction and refuse to start new ones.

        Safe to call from another thread. The materialize() call in flight
        fails with ExtractionFailed and removes its target.
        """
        self._cancelled.set()
        with self._lock:
            if self._proc is not None and self._proc.poll() is None:
                logger.debug(f"Killing tar (pid {self._proc.pid})")
                self._proc.kill()

    def materialize(self, image_ref: str, target_path: Path) -> MaterializedImage:
        """Materialize image_ref into target_path.

        target_path must be absent or an empty directory.

        Raises:
            TargetNotEmpty: target_path has contents
            PullFailed: the image could not be pulled
            ArtifactCreateFailed: the export container could not be created
            ExtractionFailed: export or tar failed; target_path was removed
        """
        target = Path(target_path)
        self._check_target(image_ref, target)

        repository, tag = split_image_ref(image_ref)
        reference = join_image_ref(repository, tag)
        logger.info(f"Pulling {reference}")
        try:
            self.registry.pull(repository, tag)
        except RegistryError as e:
            raise PullFailed(
                f"Failed to pull {image_ref}: {e}",
                image_ref,
                target,
                hint="Check the image name and registry credentials",
            ) from e

        name = f"{EPHEMERAL_PREFIX}{uuid.uuid4().hex[:12]}"
        try:
            container_id = self.registry.create_ephemeral(reference, name)
        except RegistryError as e:
            raise ArtifactCreateFailed(
                f"Failed to create export container from {image_ref}: {e}", image_ref, target
            ) from e
        logger.debug(f"Created export container {name} ({container_id[:12]})")

        try:
            self._extract(image_ref, container_id, target)
        finally:
            self._remove_container(container_id)

        logger.success(f"Root filesystem ready at {target}")
        return MaterializedImage(source_path=target, ready=True)

    def _check_target(self, image_ref: str, target: Path) -> None:
        if not target.exists():
            return
        if not target.is_dir() or any(target.iterdir()):
            raise TargetNotEmpty(image_ref, target)

    def _extract(self, image_ref: str, container_id: str, target: Path) -> None:
        """Stream the container export into tar, cleaning up target on failure."""
        target.mkdir(parents=True, exist_ok=True)
        export_errors: List[BaseException] = []
        timed_out = False

        with tempfile.TemporaryFile() as stderr_file:
            try:
                proc = subprocess.Popen(
                    [self.tar_binary, "-x", "-f", "-", "-C", str(target)],
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=stderr_file,
                )
            except OSError as e:
                self._fail(image_ref, target, f"Failed to start {self.tar_binary}: {e}")

            with self._lock:
                self._proc = proc
                if self._cancelled.is_set():
                    proc.kill()

            def export() -> None:
                try:
                    self.registry.export_filesystem(container_id, proc.stdin)
                except Exception as e:
                    export_errors.append(e)
                finally:
                    try:
                        proc.stdin.close()
                    except (OSError, ValueError):
                        pass

            thread = threading.Thread(
                target=export, name=f"export-{container_id[:12]}", daemon=True
            )
            thread.start()
            logger.debug(f"Extracting into {target}")

            try:
                returncode = proc.wait(timeout=self.extract_timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                proc.kill()
                returncode = proc.wait()
            except KeyboardInterrupt:
                proc.kill()
                proc.wait()
                clean_target(target)
                raise
            finally:
                with self._lock:
                    self._proc = None

            thread.join(timeout=self.export_join_timeout)
            if thread.is_alive():
                logger.warning(f"Export of {container_id[:12]} still running after tar exited")

            stderr_file.seek(0)
            stderr = stderr_file.read().decode("utf-8", errors="replace")[-STDERR_TAIL:]

        if self._cancelled.is_set():
            self._fail(image_ref, target, f"Extraction of {image_ref} cancelled", stderr)
        if timed_out:
            self._fail(
                image_ref,
                target,
                f"Extraction of {image_ref} timed out after {self.extract_timeout}s",
                stderr,
            )
        if returncode != 0:
            self._fail(
                image_ref,
                target,
                f"tar exited with {returncode} extracting {image_ref}",
                stderr,
            )

        # tar may stop reading once it has seen the end-of-archive marker,
        # which leaves the exporter with a broken pipe on trailing padding.
        fatal = [e for e in export_errors if not isinstance(e, BrokenPipeError)]
        if fatal:
            self._fail(image_ref, target, f"Export of {image_ref} failed: {fatal[0]}", stderr)

    def _fail(self, image_ref: str, target: Path, message: str, stderr: str = "") -> None:
        logger.error(message, console_output=False)
        if stderr:
            logger.debug(f"tar stderr: {stderr.strip()}")
        try:
            clean_target(target)
        except OSError as e:
            logger.error(f"Failed to remove partial root filesystem {target}", exc=e)
        raise ExtractionFailed(
            message,
            image_ref,
            target,
            image=MaterializedImage(source_path=target, ready=False),
            stderr=stderr,
        )

    def _remove_container(self, container_id: str) -> None:
        try:
            self.registry.remove(container_id, force=True)
            logger.debug(f"Removed export container {container_id[:12]}")
        except RegistryError as e:
            logger.warning(f"Failed to remove container {container_id[:12]} after export: {e}")
