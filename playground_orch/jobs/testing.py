from __future__ import annotations

import logging
from pathlib import Path

from playground_orch.core.models import JobRequest, Result, Success
from playground_orch.errors import InvalidArchive, NoTestProjectFound
from playground_orch.jobs.base import ToolStrategy
from playground_orch.jobs.workarea import extract_archive, find_project_descriptor

logger = logging.getLogger(__name__)


class TestStrategy(ToolStrategy):
    """
    Run the test project of an uploaded archive.

    The result is the test tool's console output verbatim; passing or failing
    tests are reported inside that text, not by the result variant.
    """

    __test__ = False  # not a pytest class
    name = "test"

    def _run(self, request: JobRequest, area: Path) -> Result:
        if request.archive is None:
            raise InvalidArchive("No archive provided for test")
        extract_archive(request.archive, area)

        descriptor = find_project_descriptor(area, test_project=True)
        if descriptor is None:
            raise NoTestProjectFound("No test csproj file found")
        logger.info(f"Testing {descriptor.relative_to(area)} for {request.correlation_key}")

        outcome = self.runner.run(
            self.executable,
            ["test", str(descriptor), "--logger", "console;verbosity=detailed"],
            cwd=descriptor.parent,
        )
        logger.info(f"Test run for {request.correlation_key} exited with {outcome.exit_code}")
        return Success(outcome.stdout.encode("utf-8"))
