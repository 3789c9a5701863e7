"""MCP stdio server fronting the ContextSwitcher gateway."""
