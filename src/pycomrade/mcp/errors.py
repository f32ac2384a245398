from __future__ import annotations


class MCPError(RuntimeError):
    """A tool server answered with an error, or the request could not be made."""


class MCPTimeoutError(MCPError, TimeoutError):
    pass


class MCPConnectionLost(MCPError):
    """The transport went away; pending requests cannot complete."""
