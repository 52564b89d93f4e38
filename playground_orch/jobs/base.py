from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol, Union

from playground_orch.core.models import Failure, JobRequest, Result
from playground_orch.errors import StrategyFailure
from playground_orch.jobs.toolchain import ToolRunner
from playground_orch.jobs.workarea import working_area

logger = logging.getLogger(__name__)


class ExecutionStrategy(Protocol):
    """
    Pure business logic: no queue, no object store.
    Turns one job request into a Result and never raises.
    """

    needs_archive: bool

    def execute(self, request: JobRequest) -> Result: ...


class ToolStrategy:
    """
    Base for strategies that run the external toolchain in a working area.

    Subclasses implement _run(); every StrategyFailure becomes a Failure
    carrying its message, anything else a Failure carrying str(exc). The
    working area is gone by the time execute() returns.
    """

    needs_archive = True
    name = "tool"

    def __init__(
        self,
        runner: ToolRunner,
        executable: str = "dotnet",
        work_root: Optional[Union[str, Path]] = None,
    ):
        self.runner = runner
        self.executable = executable
        self.work_root = work_root

    def execute(self, request: JobRequest) -> Result:
        try:
            with working_area(self.work_root, prefix=f"playground-{self.name}-") as area:
                return self._run(request, area)
        except StrategyFailure as e:
            logger.info(f"{self.name} job {request.correlation_key} failed: {type(e).__name__}")
            return Failure(str(e))
        except Exception as e:
            logger.error(f"{self.name} job {request.correlation_key} crashed: {e}", exc_info=True)
            return Failure(str(e) or type(e).__name__)

    def _run(self, request: JobRequest, area: Path) -> Result:
        raise NotImplementedError
