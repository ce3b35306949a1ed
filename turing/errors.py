"""Exception types shared across turing."""


class AgentError(Exception):
    """Raised for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (missing API key, bad config file, etc.)."""


class UnknownToolError(AgentError):
    """Raised when the model asks for a tool that is not registered."""


class ToolArgumentError(AgentError):
    """Raised when a tool call is missing a required argument or has the wrong type."""


class ToolCallAlreadyExecuted(AgentError):
    """Raised when a tool call is executed a second time."""
