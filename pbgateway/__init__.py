"""PocketBase MCP gateway."""
