from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from playground_orch.errors import ToolProcessFailure

logger = logging.getLogger(__name__)
timings_logger = logging.getLogger("playground_timings")


@dataclass(frozen=True)
class ToolOutcome:
    exit_code: int
    stdout: str
    stderr: str = ""
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ToolRunner:
    """
    Runs the external toolchain synchronously and captures its output.

    There is no timeout: a call returns when the tool exits.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self.env = dict(env) if env is not None else None

    def run(
        self,
        executable: str,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
    ) -> ToolOutcome:
        """
        Args:
            executable: Tool to run (e.g., "dotnet")
            args: Arguments, passed without a shell
            cwd: Working directory

        Raises:
            ToolProcessFailure: The executable could not be started
        """
        cmd = [executable, *[str(a) for a in args]]
        env = None
        if self.env is not None:
            env = os.environ.copy()
            env.update(self.env)

        logger.debug(f"Running {' '.join(cmd)}", extra={"cwd": str(cwd) if cwd else None})
        start = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd is not None else None,
                env=env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except FileNotFoundError as e:
            raise ToolProcessFailure(f"Tool not found: {executable}") from e
        except OSError as e:
            raise ToolProcessFailure(f"Failed to start {executable}: {e}") from e
        duration = time.monotonic() - start

        timings_logger.info(
            f"{executable} {args[0] if args else ''} took {duration:.1f}s (exit={proc.returncode})",
            extra={"duration_s": duration, "exit_code": proc.returncode},
        )
        return ToolOutcome(
            exit_code=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration_s=duration,
        )
