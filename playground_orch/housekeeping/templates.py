"""
Template catalog: installs the contract template package, publishes the list
of template short names and a pre-scaffolded zip of every template.

Published keys:
    contract/templates.txt     one short name per line
    contract/<template>.zip    "HelloWorld" scaffolded from <template>
"""
from __future__ import annotations

import logging
import re
import threading
from typing import Any, List, Optional

from playground_orch.errors import ScaffoldToolFailed, ToolProcessFailure
from playground_orch.jobs.toolchain import ToolRunner
from playground_orch.jobs.workarea import working_area, zip_directory

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_PACKAGE = "AElf.ContractTemplates"
TEMPLATES_LIST_KEY = "contract/templates.txt"
SAMPLE_PROJECT_NAME = "HelloWorld"

# Second column of the table printed after installing a template package:
#
#   Template Name                       Short Name       Language  Tags
#   ----------------------------------  ---------------  --------  ------------------
#   AElf Contract                       aelf             [C#]      AElf/SmartContract
#   AElf Contract LotteryGame Template  aelf-lottery     [C#]      AElf/SmartContract
_SHORT_NAME = re.compile(r"\s{2,}([a-zA-Z0-9-]+)\s{2,}")


def parse_template_short_names(output: str) -> List[str]:
    """Template short names from the output of `dotnet new --install <package>`."""
    lines = output.splitlines()
    for index, line in enumerate(lines):
        if "Template Name" in line:
            rows = lines[index + 2:]  # skip header and dashes
            break
    else:
        return []

    names = []
    for row in rows:
        match = _SHORT_NAME.search(row)
        if match:
            names.append(match.group(1))
    return names


def template_zip_key(template: str) -> str:
    return f"contract/{template}.zip"


def read_published_templates(store: Any) -> List[str]:
    """Short names listed in contract/templates.txt (ObjectNotFound before the first install)."""
    content = store.get(TEMPLATES_LIST_KEY).decode("utf-8")
    return [line.strip() for line in content.splitlines() if line.strip()]


class TemplateCatalog:
    def __init__(
        self,
        runner: ToolRunner,
        store: Any,
        executable: str = "dotnet",
        package: str = DEFAULT_TEMPLATE_PACKAGE,
        work_root: Optional[str] = None,
    ):
        self.runner = runner
        self.store = store
        self.executable = executable
        self.package = package
        self.work_root = work_root

    def install(self, publish: bool = True) -> List[str]:
        """
        Install (or update) the template package and publish its template list.

        Args:
            publish: Write contract/templates.txt (workers only need the install)

        Returns:
            Template short names
        """
        logger.info(f"Installing {self.package}")
        outcome = self.runner.run(self.executable, ["new", "--install", self.package])
        logger.debug(outcome.stdout)
        if not outcome.ok:
            raise ToolProcessFailure(outcome.stdout or outcome.stderr or f"Installing {self.package} failed")

        names = parse_template_short_names(outcome.stdout)
        if publish:
            self.store.put(TEMPLATES_LIST_KEY, "".join(f"{name}\n" for name in names).encode("utf-8"))
        logger.info(f"Installed {len(names)} templates from {self.package}: {', '.join(names)}")
        return names

    def generate(self, template: str) -> str:
        """
        Scaffold the sample project from a template and publish it zipped.

        Returns:
            Object store key of the zip
        """
        with working_area(self.work_root, prefix="playground-catalog-") as area:
            project_dir = area / "project"
            project_dir.mkdir()
            outcome = self.runner.run(self.executable, ["new", template, "-n", SAMPLE_PROJECT_NAME], cwd=project_dir)
            if not outcome.ok:
                raise ScaffoldToolFailed(outcome.stdout or outcome.stderr or f"Scaffolding {template} failed")

            zip_path = zip_directory(project_dir, area / "contract.zip")
            key = template_zip_key(template)
            self.store.put(key, zip_path.read_bytes())

        logger.info(f"Uploaded template {template}")
        return key

    def refresh(self) -> List[str]:
        """
        Install the package, then scaffold and publish every template.

        A template that fails to scaffold is logged and skipped.

        Returns:
            Templates successfully published
        """
        published = []
        for template in self.install():
            try:
                self.generate(template)
                published.append(template)
            except Exception as e:
                logger.error(f"Error generating template {template}: {e}", exc_info=True)
        return published

    def refresh_periodically(self, stop_event: threading.Event, every_hours: float = 24.0) -> None:
        """Refresh now and then every N hours until stop_event is set."""
        while not stop_event.is_set():
            try:
                self.refresh()
            except Exception as e:
                logger.error(f"Error installing {self.package}: {e}", exc_info=True)
            stop_event.wait(every_hours * 3600)
