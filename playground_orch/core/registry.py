from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from playground_orch.core.models import Command
from playground_orch.errors import UnknownCommand
from playground_orch.jobs.base import ExecutionStrategy
from playground_orch.jobs.toolchain import ToolRunner

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """
    Maps command tags to execution strategies.

    Lookups are exact: an unregistered tag is never routed anywhere.
    """

    def __init__(self) -> None:
        self._strategies: Dict[str, ExecutionStrategy] = {}

    def register(self, command: Union[str, Command], strategy: ExecutionStrategy) -> None:
        """
        Register a strategy for a command tag, replacing any previous one.

        Args:
            command: Command tag (e.g., "build", Command.TEST)
            strategy: Anything implementing execute(request) -> Result
        """
        tag = command.value if isinstance(command, Command) else command
        if tag in self._strategies:
            logger.warning(f"Replacing strategy registered for '{tag}'")
        self._strategies[tag] = strategy

    def resolve(self, command: str) -> ExecutionStrategy:
        """
        Raises:
            UnknownCommand: If no strategy is registered for the tag
        """
        try:
            return self._strategies[command]
        except KeyError:
            available = ", ".join(sorted(self._strategies))
            raise UnknownCommand(f"No strategy registered for '{command}'. Available: {available}") from None

    def commands(self) -> List[str]:
        return sorted(self._strategies)

    def __contains__(self, command: object) -> bool:
        return command in self._strategies


def build_default_registry(
    runner: Optional[ToolRunner] = None,
    executable: str = "dotnet",
    work_root: Optional[Union[str, Path]] = None,
) -> StrategyRegistry:
    """Registry with the build, test and template strategies wired to one tool runner."""
    from playground_orch.jobs.build import BuildStrategy
    from playground_orch.jobs.template import TemplateStrategy
    from playground_orch.jobs.testing import TestStrategy

    runner = runner or ToolRunner()
    registry = StrategyRegistry()
    registry.register(Command.BUILD, BuildStrategy(runner, executable=executable, work_root=work_root))
    registry.register(Command.TEST, TestStrategy(runner, executable=executable, work_root=work_root))
    registry.register(Command.TEMPLATE, TemplateStrategy(runner, executable=executable, work_root=work_root))
    return registry
