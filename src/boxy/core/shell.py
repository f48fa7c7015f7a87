"""Asynchronous shell command execution with timeout and JSON parsing."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import signal
import time
from pathlib import Path
from typing import Any, Optional

from boxy.core.errors import (
    CommandFailedError,
    CommandInterruptedError,
    CommandTimeoutError,
    ManagerUnavailableError,
    ParseError,
)
from boxy.core.logging import get_logger

log = get_logger(__name__)

ENV_OVERRIDES = {
    "LANG": "C",
    "HOMEBREW_NO_COLOR": "1",
    "HOMEBREW_NO_AUTO_UPDATE": "1",
    "NO_COLOR": "1",
}


def which(program: str) -> str | None:
    """Locate ``program`` on PATH."""
    return shutil.which(program)


async def run_capture(
    *cmd: str, timeout: Optional[float] = 30, cwd: Path | None = None
) -> tuple[str, str, int]:
    """Run a command asynchronously with optional timeout.

    Args:
        *cmd: Command and its arguments to run.
        timeout: Timeout in seconds, None for no limit.
        cwd: Working directory for the command.

    Returns:
        A tuple of (stdout, stderr, returncode).

    Raises:
        ManagerUnavailableError: If the executable cannot be started.
        CommandTimeoutError: If the command times out.
    """
    start = time.perf_counter()
    command = " ".join(cmd)
    log.debug("command_start", command=command, timeout=timeout, cwd=str(cwd) if cwd else None)

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env={**os.environ, **ENV_OVERRIDES},
        )
    except (FileNotFoundError, PermissionError) as e:
        log.warning("command_not_startable", command=command, error=str(e))
        raise ManagerUnavailableError(name=cmd[0], reason=str(e)) from e

    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError as e:
        duration_ms = int((time.perf_counter() - start) * 1000)
        log.error(
            "command_timeout",
            command=command,
            timeout=timeout,
            duration_ms=duration_ms
        )
        try:
            process.kill()
        except ProcessLookupError:
            pass
        raise CommandTimeoutError(command=command, timeout=timeout) from e
    except asyncio.CancelledError:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        raise

    duration_ms = int((time.perf_counter() - start) * 1000)
    log.info(
        "command_complete",
        command=command,
        returncode=process.returncode,
        duration_ms=duration_ms
    )

    return (
        out.decode(errors="replace").strip(),
        err.decode(errors="replace").strip(),
        process.returncode,
    )


async def run_checked(
    manager: str, *cmd: str, timeout: Optional[float] = 30, cwd: Path | None = None
) -> str:
    """Run a command and return stdout, raising on a non-zero exit.

    Args:
        manager: Manager name for error context.
        *cmd: Command and its arguments to run.
        timeout: Timeout in seconds.
        cwd: Working directory for the command.

    Returns:
        The command's stdout.

    Raises:
        CommandInterruptedError: If the command was killed by a signal.
        CommandFailedError: If the command exits non-zero.
    """
    out, err, code = await run_capture(*cmd, timeout=timeout, cwd=cwd)
    if code == 0:
        return out

    command = " ".join(cmd)
    log.error("command_failed", manager=manager, command=command, error=err or out, returncode=code)

    if code < 0 and -code in (signal.SIGINT, signal.SIGTERM, signal.SIGKILL):
        raise CommandInterruptedError(
            f"Command interrupted by signal {-code}",
            context={"manager": manager, "command": command},
        )
    raise CommandFailedError(
        manager=manager, command=command, exit_code=code, error=(err or out)[:500]
    )


async def run_json(
    manager: str, *cmd: str, timeout: Optional[float] = 30, cwd: Path | None = None
) -> Any:
    """Run a command and parse its JSON output.

    Args:
        manager: Manager name for error context.
        *cmd: Command and its arguments to run.
        timeout: Timeout in seconds.
        cwd: Working directory for the command.

    Returns:
        Parsed JSON output.

    Raises:
        ParseError: If the output is not valid JSON.
    """
    out = await run_checked(manager, *cmd, timeout=timeout, cwd=cwd)
    return loads_json(manager, out, command=" ".join(cmd))


def loads_json(manager: str, text: str, command: str | None = None) -> Any:
    """Parse command output as JSON; empty output yields None.

    Raises:
        ParseError: If the output is not valid JSON.
    """
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        log.error("json_parse_failed", manager=manager, command=command, error=str(e))
        raise ParseError(
            "Failed to parse JSON output",
            context={
                "manager": manager,
                "command": command,
                "output_preview": text[:200],
            },
        ) from e


async def probe(program: str, *args: str, timeout: float = 5.0) -> bool:
    """Check that ``program`` exists and runs successfully with ``args``.

    Any failure, including a timeout, counts as "not available".
    """
    if which(program) is None:
        return False
    try:
        _, _, code = await run_capture(program, *args, timeout=timeout)
    except (ManagerUnavailableError, CommandTimeoutError):
        return False
    return code == 0
