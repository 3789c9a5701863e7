"""ContextSwitcher MCP gateway.

A gateway that launches a set of MCP servers from a configuration file,
publishes their combined tools as one catalog, and routes each call to the
server that owns the tool. The active configuration can be swapped at
runtime through the gateway's own ``context_switch`` tool.
"""

__version__ = "0.1.0"
