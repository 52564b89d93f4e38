from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional, Union

from playground_orch.core.models import JobRequest, Result, Success
from playground_orch.errors import InvalidTemplateParameters, ScaffoldToolFailed
from playground_orch.jobs.base import ToolStrategy
from playground_orch.jobs.toolchain import ToolRunner
from playground_orch.jobs.workarea import zip_directory

logger = logging.getLogger(__name__)

# Both values end up as scaffolding tool arguments and directory names
_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class TemplateStrategy(ToolStrategy):
    """Scaffold a new project from an installed template and return it zipped."""

    needs_archive = False
    name = "template"

    def __init__(
        self,
        runner: ToolRunner,
        executable: str = "dotnet",
        work_root: Optional[Union[str, Path]] = None,
        encode_base64: bool = True,
    ):
        super().__init__(runner, executable=executable, work_root=work_root)
        self.encode_base64 = encode_base64

    def _run(self, request: JobRequest, area: Path) -> Result:
        template = request.params.get("template", "")
        project_name = request.params.get("projectName", "")
        for label, value in (("template", template), ("projectName", project_name)):
            if not value:
                raise InvalidTemplateParameters(f"Template command requires '{label}'")
            if not _SAFE_NAME.match(value) or ".." in value:
                raise InvalidTemplateParameters(f"Invalid {label}: {value!r}")

        template_dir = area / "template"
        template_dir.mkdir()
        logger.info(f"Scaffolding '{template}' as {project_name} for {request.correlation_key}")

        outcome = self.runner.run(self.executable, ["new", template, "-n", project_name], cwd=template_dir)
        if not outcome.ok:
            raise ScaffoldToolFailed(
                outcome.stdout or outcome.stderr or f"Scaffolding failed with exit code {outcome.exit_code}"
            )

        zip_path = zip_directory(template_dir, area / "template.zip")
        data = zip_path.read_bytes()
        if self.encode_base64:
            return Success.base64_of(data)
        return Success(data)
