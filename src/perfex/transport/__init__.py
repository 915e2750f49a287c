"""Transports exposing the Dispatcher: MCP over stdio and a FastAPI façade."""
