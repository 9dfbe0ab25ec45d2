"""Exceptions raised by agent adapters."""


class AgentError(Exception):
    """Base class for failures talking to the command-line agent."""

    def __init__(self, message: str, handle: str | None = None):
        super().__init__(message)
        self.handle = handle


class AgentUnavailableError(AgentError):
    """The agent binary is not configured or cannot be found."""


class AgentStartupError(AgentError):
    """The agent process could not be launched."""


class AgentExecutionError(AgentError):
    """The agent failed while producing output.

    ``partial_output`` holds the chunks that were already yielded before the
    failure, in order.
    """

    def __init__(
        self,
        message: str,
        handle: str | None = None,
        partial_output: list[str] | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message, handle=handle)
        self.partial_output = list(partial_output or [])
        self.exit_code = exit_code
