"""Run external programs and capture their output."""

from __future__ import annotations

import logging
import subprocess
from typing import Sequence

from gb_common.errors import ExecutionError

logger = logging.getLogger(__name__)


class CommandRunner:
    """Execute a program synchronously; no retry, no output interpretation."""

    def run(self, program: str, args: Sequence[str] = (), *, stream: bool = False) -> str:
        """Run ``program`` with ``args`` and return its stdout.

        With ``stream`` the child writes straight to our stdout/stderr and the
        returned text is empty.
        """
        cmd = [program, *args]
        logger.debug("Executing %s", " ".join(cmd))
        try:
            if stream:
                proc = subprocess.run(cmd, check=False)
            else:
                proc = subprocess.run(cmd, check=False, capture_output=True, text=True)
        except OSError as exc:
            raise ExecutionError(program, args, cause=exc) from exc

        stdout = proc.stdout or ""
        stderr = proc.stderr or ""
        if proc.returncode != 0:
            raise ExecutionError(
                program,
                args,
                returncode=proc.returncode,
                stdout=stdout,
                stderr=stderr,
            )
        return stdout
