"""FastAPI façade over the Dispatcher.

Routes:
    GET  /health                 database check and pool occupancy
    GET  /api/tools              tool descriptors
    POST /api/tools/{tool_name}  invoke a tool with {"arguments": {...}}
    GET  /api/customers, /api/invoices, /api/projects, /api/tasks, /api/leads
                                 list tools with query parameters as arguments

Every tool route answers with the same envelope:
    {"success": bool, "tool": str, "data" | "error": ..., "timestamp": iso8601}
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..db.sanitizer import sanitize_error_message
from ..tools.base import ToolResponse
from ..tools.dispatcher import PRIVATE_DETAIL_KEYS, Dispatcher

logger = logging.getLogger(__name__)

# Error code -> HTTP status; anything else is a 500
ERROR_STATUS = {
    "TOOL_NOT_FOUND": 404,
    "NOT_FOUND": 404,
    "VALIDATION_ERROR": 400,
}

LIST_ROUTES = {
    "customers": "get_customers",
    "invoices": "get_invoices",
    "projects": "get_projects",
    "tasks": "get_tasks",
    "leads": "get_leads",
}


class InvokeRequest(BaseModel):
    arguments: dict[str, Any] = Field(default_factory=dict)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def status_for(response: ToolResponse) -> int:
    if not response.is_error:
        return 200
    code = response.error.code if response.error else "INTERNAL_ERROR"
    return ERROR_STATUS.get(code, 500)


def envelope(tool_name: str, response: ToolResponse) -> dict[str, Any]:
    body: dict[str, Any] = {"success": not response.is_error, "tool": tool_name}
    if response.is_error:
        body["error"] = response.error.to_dict() if response.error else {"code": "INTERNAL_ERROR"}
    else:
        body["data"] = response.data
    body["timestamp"] = _now()
    return body


def create_app(dispatcher: Dispatcher, db, close_on_shutdown: bool = True) -> FastAPI:
    """Build the REST application around an existing dispatcher and database.

    Args:
        dispatcher: Tool dispatcher shared with the other transport
        db: ConnectionManager used for /health
        close_on_shutdown: Close ``db`` when the application stops
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Perfex CRM REST API...")
        yield
        logger.info("Shutting down Perfex CRM REST API...")
        if close_on_shutdown:
            await db.close()

    app = FastAPI(
        title="Perfex CRM Tools API",
        description="REST access to the Perfex CRM tool set",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.dispatcher = dispatcher
    app.state.db = db

    async def run_tool(tool_name: str, arguments: dict[str, Any]) -> JSONResponse:
        response = await dispatcher.invoke(tool_name, arguments)
        return JSONResponse(
            status_code=status_for(response),
            content=jsonable_encoder(envelope(tool_name, response)),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": sanitize_error_message(str(exc)),
                },
                "timestamp": _now(),
            },
        )

    @app.get("/health")
    async def health():
        healthy = await db.test_connection()
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "unhealthy",
                "database": {
                    k: v for k, v in db.stats().items() if k not in PRIVATE_DETAIL_KEYS
                },
                "timestamp": _now(),
            },
        )

    @app.get("/api/tools")
    async def list_tools():
        tools = dispatcher.list_tools()
        return {"tools": tools, "count": len(tools)}

    @app.post("/api/tools/{tool_name}")
    async def invoke_tool(tool_name: str, payload: Optional[InvokeRequest] = None):
        return await run_tool(tool_name, payload.arguments if payload else {})

    def add_list_route(resource: str, tool_name: str) -> None:
        async def list_resource(request: Request):
            return await run_tool(tool_name, dict(request.query_params))

        app.add_api_route(
            f"/api/{resource}",
            list_resource,
            methods=["GET"],
            name=f"list_{resource}",
        )

    for resource, tool_name in LIST_ROUTES.items():
        add_list_route(resource, tool_name)

    return app
