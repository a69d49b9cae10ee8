"""Run state threaded through the bootstrap steps."""

from enum import Enum

from pydantic import BaseModel


class ReadinessOutcome(str, Enum):
    INITIALIZED = "initialized"  # first-run credential surfaced
    ALREADY_CONFIGURED = "already_configured"  # restored instance, setup done
    TIMED_OUT = "timed_out"


class BootstrapState(BaseModel):
    """Facts established so far in one bootstrap run.

    Each step reads what earlier steps recorded and records its own
    outcome; nothing else carries state between steps.
    """

    restore_occurred: bool = False
    container_started: bool = False
    bridge_verified: bool = False
    readiness: ReadinessOutcome | None = None
