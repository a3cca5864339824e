from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from loguru import logger

from block_gateway.context import GatewayContext
from block_gateway.web.dependencies import get_context

router = APIRouter()


@router.get("/health")
def health_check(context: GatewayContext = Depends(get_context)) -> Dict[str, Any]:
    """
    Checks the health of a project.

    It returns 200 if the project is healthy.
    """
    logger.debug("Health check endpoint accessed")
    return {
        "status": "ok",
        "tracker": context.tracker.mode.value,
        "subscribers": context.hub.count_by_kind(),
    }


@router.get("/")
def root(request: Request, context: GatewayContext = Depends(get_context)) -> Dict[str, Any]:
    logger.info("Root endpoint accessed")
    base = str(request.base_url).rstrip("/")
    ws_base = base.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
    return {
        "message": "MCP Server is running!",
        "server": {
            "version": context.config.version,
            "host": request.url.hostname,
            "port": request.url.port or context.config.port,
        },
        "endpoints": {
            "documentation": f"{base}/api-docs",
            "websocket": f"{ws_base}/ws",
            "sse": f"{base}/sse",
            "mcpSse": f"{base}/mcp-sse",
            "mcp": f"{base}/mcp",
            "health": f"{base}/health",
            "metrics": f"{base}/metrics",
            "api": f"{base}/api",
        },
        "features": {
            "websocket": True,
            "sse": True,
            "mcp": True,
            "swagger": True,
            "realTimeUpdates": True,
        },
    }
