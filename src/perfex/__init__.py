"""Perfex CRM tool server.

Exposes CRM operations ("tools") over a pooled, retrying PostgreSQL client
to automation agents through two transports: MCP over stdio and a REST
façade.

Packages:
    db: ConnectionManager, RetryPolicy, sanitizers, WhereBuilder
    tools: Tool descriptors, ToolRegistry, Dispatcher, CRM tool collections
    transport: MCP (stdio) and FastAPI adapters
"""

__version__ = "1.0.0"
