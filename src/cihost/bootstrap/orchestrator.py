"""Bootstrap orchestrator: runs every step once, strictly in order.

Each step receives the shared ``BootstrapState`` and records its outcome
there. A fatal ``BootstrapError`` stops the run; nothing later executes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

from cihost.bootstrap.identity import IdentityReconciler
from cihost.bootstrap.launcher import ContainerLauncher
from cihost.bootstrap.readiness import ReadinessWaiter
from cihost.bootstrap.restore import StateRestorer
from cihost.bootstrap.runtime import RuntimePreparer
from cihost.bootstrap.schedule import ContinuityScheduler
from cihost.bootstrap.state import BootstrapState
from cihost.bootstrap.sync import StateSync
from cihost.bootstrap.toolchain import ToolchainExtender
from cihost.config import BootstrapConfig
from cihost.infra import (
    ContainerAPI,
    DockerClient,
    ImageAPI,
    InstanceMetadataClient,
    S3Operations,
)
from cihost.logging_schema import LogEvent
from cihost.metrics import (
    BOOTSTRAP_RESTORE_OCCURRED,
    BOOTSTRAP_RUN_STATUS,
    BOOTSTRAP_STEP_DURATION,
)

logger = logging.getLogger(__name__)


@dataclass
class BootstrapSteps:
    """The step components, wired once per run."""

    runtime: RuntimePreparer
    restorer: StateRestorer
    identity: IdentityReconciler
    launcher: ContainerLauncher
    toolchain: ToolchainExtender
    readiness: ReadinessWaiter
    scheduler: ContinuityScheduler


def build_steps(config: BootstrapConfig, docker: DockerClient) -> BootstrapSteps:
    """Wire the production components for one run."""
    containers = ContainerAPI(docker)
    images = ImageAPI(docker)
    sync = StateSync(config.s3, config.workload.state_dir, S3Operations(config.s3))
    launcher = ContainerLauncher(config, containers, images)
    return BootstrapSteps(
        runtime=RuntimePreparer(config, docker),
        restorer=StateRestorer(config, sync),
        identity=IdentityReconciler(config, InstanceMetadataClient(config.metadata)),
        launcher=launcher,
        toolchain=ToolchainExtender(config, containers, launcher),
        readiness=ReadinessWaiter(config),
        scheduler=ContinuityScheduler(config),
    )


class BootstrapOrchestrator:
    def __init__(self, config: BootstrapConfig, steps: BootstrapSteps) -> None:
        self._config = config
        self._steps = steps

    async def _step(self, name: str, awaitable: Awaitable[Any]) -> Any:
        logger.info("Step %s started", name, extra={"event": LogEvent.STEP_STARTED, "step": name})
        start = time.monotonic()
        try:
            return await awaitable
        finally:
            duration = time.monotonic() - start
            BOOTSTRAP_STEP_DURATION.labels(step=name).observe(duration)
            logger.info(
                "Step %s finished in %.1fs",
                name,
                duration,
                extra={"event": LogEvent.STEP_COMPLETED, "step": name, "duration": duration},
            )

    async def run(self) -> BootstrapState:
        """Execute the full bootstrap sequence.

        Raises:
            BootstrapError: a fatal step failed; later steps did not run
        """
        steps = self._steps
        state = BootstrapState()
        logger.info(
            "Bootstrap started for %s",
            self._config.workload.container_name,
            extra={"event": LogEvent.RUN_STARTED, "store": self._config.s3.url},
        )

        BOOTSTRAP_RUN_STATUS.set(0)
        try:
            await self._step("runtime", steps.runtime.prepare())
            await self._step("restore", steps.restorer.restore(state))
            BOOTSTRAP_RESTORE_OCCURRED.set(1 if state.restore_occurred else 0)
            if state.restore_occurred:
                await self._step("identity", steps.identity.reconcile(state))
            await self._step("launch", steps.launcher.launch(state))
            await self._step("toolchain", steps.toolchain.extend(state))
            await self._step("readiness", steps.readiness.wait(state))
            await self._step("schedule", steps.scheduler.schedule())
        except Exception:
            logger.error(
                "Bootstrap aborted",
                extra={"event": LogEvent.RUN_FAILED, **state.model_dump(mode="json")},
            )
            raise

        BOOTSTRAP_RUN_STATUS.set(1)
        logger.info(
            "Bootstrap completed",
            extra={"event": LogEvent.RUN_COMPLETED, **state.model_dump(mode="json")},
        )
        return state
