"""Real-time block gateway: REST, WebSocket, SSE and MCP-SSE access to an EVM chain."""
