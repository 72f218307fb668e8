"""Blocking invocation of external helper programs."""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import IO, Optional, Sequence, Union

__all__ = ["EXIT_NOT_FOUND", "EXIT_NOT_EXECUTABLE", "run_command"]

LOGGER = logging.getLogger("storekeeper.proc")

EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127

PathLike = Union[str, Path]


def run_command(
    args: Sequence[PathLike],
    *,
    stdout: Optional[IO[bytes]] = None,
    discard_stderr: bool = False,
    log_output: bool = True,
) -> int:
    """Run ``args`` to completion and return its exit status.

    ``stdout`` may be an open binary file receiving the program output; by
    default output is captured and written to the debug log so the pipe is
    always drained. The command line itself is never logged here: callers
    log the pieces that are safe to show.
    """

    cmd = [str(part) for part in args]
    stderr_target = subprocess.DEVNULL if discard_stderr else subprocess.PIPE
    stdout_target = stdout if stdout is not None else subprocess.PIPE
    try:
        proc = subprocess.run(
            cmd,
            check=False,
            stdin=subprocess.DEVNULL,
            stdout=stdout_target,
            stderr=stderr_target,
        )
    except FileNotFoundError:
        LOGGER.error("Program not found: %s", cmd[0] if cmd else "<empty>")
        return EXIT_NOT_FOUND
    except PermissionError:
        LOGGER.error("Program is not executable: %s", cmd[0] if cmd else "<empty>")
        return EXIT_NOT_EXECUTABLE
    except OSError as exc:
        LOGGER.error("Unable to start %s: %s", cmd[0] if cmd else "<empty>", exc)
        return EXIT_NOT_EXECUTABLE

    if log_output:
        for stream, label in ((proc.stdout, "stdout"), (proc.stderr, "stderr")):
            if not stream:
                continue
            output = stream.decode("utf-8", errors="replace").strip()
            if output:
                LOGGER.debug("%s %s: %s", Path(cmd[0]).name, label, output)
    return int(proc.returncode)
