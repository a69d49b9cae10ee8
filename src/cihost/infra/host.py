"""Host command execution."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from cihost.errors import CommandError
from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    """Exit status and captured output of a host command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[..., Awaitable[CommandResult]]


async def run_command(
    argv: list[str],
    input: str | None = None,
    check: bool = False,
) -> CommandResult:
    """Run a host command and capture its output.

    Args:
        argv: Command and arguments (no shell)
        input: Text written to stdin
        check: Raise CommandError on non-zero exit

    Returns:
        CommandResult. A missing executable is reported as returncode 127.
    """
    logger.debug("Running: %s", " ".join(argv))
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        result = CommandResult(argv=argv, returncode=127, stderr=f"{argv[0]}: command not found")
    else:
        stdout, stderr = await proc.communicate(input.encode() if input is not None else None)
        result = CommandResult(
            argv=argv,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    if not result.ok:
        logger.debug(
            "Command exited %d: %s",
            result.returncode,
            result.stderr.strip(),
            extra={"event": LogEvent.COMMAND_FAILED, "argv": argv},
        )
        if check:
            raise CommandError(
                f"{' '.join(argv)} exited {result.returncode}: {result.stderr.strip()}"
            )
    return result
