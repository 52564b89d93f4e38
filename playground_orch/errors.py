class RetryableTaskError(Exception):
    """Task failed but should be retried (transient failure)."""

class TerminalTaskError(Exception):
    """Task failed and should not be retried (bad input, invariant broken)."""


class ConfigError(ValueError):
    """Required configuration is missing or invalid."""


class MalformedEnvelope(TerminalTaskError):
    """Queue entry has no correlation key, no payload, or no command."""

class UnknownCommand(TerminalTaskError):
    """Command tag has no registered execution strategy."""


class StrategyFailure(TerminalTaskError):
    """
    Failure inside an execution strategy.

    The message is the diagnostic text published as the error result, so it
    must be meaningful to the submitter on its own.
    """

class NoProjectFound(StrategyFailure):
    pass

class NoTestProjectFound(StrategyFailure):
    pass

class NoArtifactProduced(StrategyFailure):
    pass

class InvalidArchive(StrategyFailure):
    """Archive is not a zip file or has entries escaping the working area."""

class InvalidTemplateParameters(StrategyFailure):
    pass

class ToolProcessFailure(StrategyFailure):
    """External tool could not be started or exited non-zero."""

class BuildToolFailed(ToolProcessFailure):
    pass

class ScaffoldToolFailed(ToolProcessFailure):
    pass


class ObjectNotFound(KeyError):
    """No object stored under the requested key."""

    def __str__(self) -> str:
        return f"Object not found: {self.args[0] if self.args else ''}"

class ObjectStoreUnavailable(RetryableTaskError):
    pass

class QueueUnavailable(RetryableTaskError):
    pass
