from __future__ import annotations

import logging
from pathlib import Path

from playground_orch.core.models import JobRequest, Result, Success
from playground_orch.errors import BuildToolFailed, InvalidArchive, NoArtifactProduced, NoProjectFound
from playground_orch.jobs.base import ToolStrategy
from playground_orch.jobs.workarea import extract_archive, find_artifact, find_project_descriptor

logger = logging.getLogger(__name__)


class BuildStrategy(ToolStrategy):
    """
    Build the (single, non-test) project of an uploaded archive.

    Success carries the built assembly, base64-encoded. A failed build
    publishes the build tool's standard output as the error text.
    """

    name = "build"

    def _run(self, request: JobRequest, area: Path) -> Result:
        if request.archive is None:
            raise InvalidArchive("No archive provided for build")
        extract_archive(request.archive, area)

        descriptor = find_project_descriptor(area, test_project=False)
        if descriptor is None:
            raise NoProjectFound("No csproj file found")
        logger.info(f"Building {descriptor.relative_to(area)} for {request.correlation_key}")

        outcome = self.runner.run(
            self.executable,
            ["build", str(descriptor), "-p:RunAnalyzers=false"],
            cwd=descriptor.parent,
        )
        if not outcome.ok:
            raise BuildToolFailed(outcome.stdout or outcome.stderr or f"Build failed with exit code {outcome.exit_code}")

        artifact = find_artifact(area, preferred_stem=descriptor.stem)
        if artifact is None:
            raise NoArtifactProduced("No dll file found")
        logger.info(f"Build produced {artifact.relative_to(area)} ({artifact.stat().st_size} bytes)")

        return Success.base64_of(artifact.read_bytes())
