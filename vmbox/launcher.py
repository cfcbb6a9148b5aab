# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Top-level orchestration: resolve + materialize, then plan, then execute.

Config resolution and image materialization share nothing, so they run side
by side in a two-worker pool. Planning waits for both; the plan only ever
sees an image whose tar process has already been waited on.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Optional

from vmbox.config_resolver import (
    ConfigResolver,
    EtcdStore,
    KeyValueStore,
    LaunchConfig,
    validate_instance_id,
)
from vmbox.executor import ExitStatus, LaunchExecutor
from vmbox.host_config import Settings
from vmbox.image import DockerRegistry, ImageMaterializer, MaterializedImage, Registry, clean_target
from vmbox.planner import LaunchPlan, LaunchPlanner
from vmbox.utils.exceptions import LaunchError, VMBoxError
from vmbox.utils.logging import get_logger

logger = get_logger(__name__)


class Launcher:
    """Materializes and launches exactly one VM instance.

    Collaborators default to the real etcd/Docker/subprocess implementations
    built from settings; tests pass fakes instead.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[KeyValueStore] = None,
        registry: Optional[Registry] = None,
        executor: Optional[LaunchExecutor] = None,
    ):
        self.settings = settings
        self._owns_store = store is None
        self.store = store or EtcdStore(settings.etcd.servers, timeout=settings.etcd.timeout)
        self.registry = registry or DockerRegistry(
            base_url=settings.docker.url, timeout=settings.docker.pull_timeout
        )
        self.resolver = ConfigResolver(self.store, domain=settings.etcd.domain)
        self.materializer = ImageMaterializer(
            self.registry, extract_timeout=settings.materialize.extract_timeout
        )
        self.planner = LaunchPlanner()
        self.executor = executor or LaunchExecutor(
            capture_output=settings.launch.capture_output
        )

    @property
    def target_path(self) -> Path:
        return Path(self.settings.materialize.target_path)

    def resolve(self, instance_id: str) -> LaunchConfig:
        """Resolve the instance config on its own (no materialization)."""
        try:
            return self.resolver.resolve(instance_id)
        finally:
            if self._owns_store:
                self.store.close()

    def materialize(self, clean: bool = False) -> MaterializedImage:
        """Materialize the configured image into the configured target."""
        if clean:
            logger.info(f"Removing existing root filesystem at {self.target_path}")
            clean_target(self.target_path)
        return self.materializer.materialize(self.settings.docker.image, self.target_path)

    def prepare(self, instance_id: str, clean: bool = False) -> LaunchPlan:
        """Resolve config and materialize concurrently, then build the plan.

        Both tasks are always allowed to finish before any error is raised.
        A configuration error is reported ahead of a materialization error.
        If anything fails after the image was materialized, the target is
        removed again so a rerun starts clean.
        """
        validate_instance_id(instance_id)
        logger.info(f"Preparing instance {instance_id}")

        try:
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="vmbox") as pool:
                config_future = pool.submit(self.resolver.resolve, instance_id)
                image_future = pool.submit(self.materialize, clean)
                try:
                    wait([config_future, image_future])
                except KeyboardInterrupt:
                    # The pool joins its workers on exit; tar must not outlive us
                    logger.warning("Interrupted, stopping extraction")
                    self.materializer.cancel()
                    raise
        finally:
            if self._owns_store:
                self.store.close()

        config_error = config_future.exception()
        image_error = image_future.exception()
        if config_error and image_error:
            logger.error("Materialization also failed", exc=image_error, console_output=False)
        if image_error:
            raise config_error or image_error

        image = image_future.result()
        try:
            if config_error:
                raise config_error
            plan = self.planner.plan(image, config_future.result(), self.settings.sandbox)
        except VMBoxError:
            self._discard(image)
            raise

        logger.debug(f"Launch plan: {plan.command_line()}")
        return plan

    def run(self, instance_id: str, clean: bool = False) -> ExitStatus:
        """Prepare and execute; returns the sandbox's exit status."""
        plan = self.prepare(instance_id, clean=clean)
        logger.info(f"Launching {instance_id} from {plan.image.source_path}")
        try:
            return self.executor.execute(plan)
        except LaunchError:
            self._discard(plan.image)
            raise

    def _discard(self, image: MaterializedImage) -> None:
        """Remove a materialized root nobody is going to launch."""
        logger.info(f"Removing unused root filesystem at {image.source_path}")
        try:
            clean_target(image.source_path)
        except OSError as e:
            logger.error(f"Failed to remove {image.source_path}", exc=e)
