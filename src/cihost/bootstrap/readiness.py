"""Readiness Waiter: advisory check that Jenkins finished initializing.

Jenkins writes secrets/initialAdminPassword while its setup wizard is
pending and the setup-completed marker once setup has run. Either path
(fresh or restored) waits for whichever appears first: a password file
means the wizard still needs it, a marker alone means the home is
already configured. Neither outcome gates the rest of the run.
"""

import logging
from pathlib import Path

from cihost.bootstrap.state import BootstrapState, ReadinessOutcome
from cihost.config import BootstrapConfig
from cihost.core.poll import bounded_poll
from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class ReadinessWaiter:
    def __init__(self, config: BootstrapConfig) -> None:
        self._workload = config.workload

    @property
    def password_file(self) -> Path:
        return self._workload.state_dir / self._workload.initial_password_file

    @property
    def setup_marker(self) -> Path:
        return self._workload.state_dir / self._workload.setup_complete_marker

    async def wait(self, state: BootstrapState) -> ReadinessOutcome:
        password_file = self.password_file
        marker = self.setup_marker

        async def present() -> bool:
            return password_file.is_file() or marker.is_file()

        poll = await bounded_poll(
            present,
            interval=self._workload.readiness_interval,
            max_attempts=self._workload.readiness_attempts,
            description=f"Jenkins to create {password_file.name} or {marker.name}",
        )

        if not poll.succeeded:
            logger.warning(
                "Jenkins created neither %s nor %s in time; initialization may not have finished",
                password_file,
                marker,
                extra={"event": LogEvent.READINESS_TIMEOUT, "attempts": poll.attempts},
            )
            outcome = ReadinessOutcome.TIMED_OUT
        elif password_file.is_file():
            password = password_file.read_text(encoding="utf-8").strip()
            logger.info(
                "Jenkins initial admin password: %s",
                password,
                extra={"event": LogEvent.READINESS_INITIALIZED, "restored": state.restore_occurred},
            )
            outcome = ReadinessOutcome.INITIALIZED
        else:
            logger.info(
                "Jenkins already configured; log in with your existing credentials",
                extra={"event": LogEvent.READINESS_CONFIGURED, "restored": state.restore_occurred},
            )
            outcome = ReadinessOutcome.ALREADY_CONFIGURED

        state.readiness = outcome
        return outcome
