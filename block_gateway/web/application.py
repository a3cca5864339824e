from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from block_gateway.config import settings
from block_gateway.context import GatewayContext
from block_gateway.errors import GatewayError
from block_gateway.web.api.router import api_router
from block_gateway.web.lifespan import lifespan_setup


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


async def validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    error = exc.errors()[0] if exc.errors() else {}
    field = str(error.get("loc", ["", "request"])[-1])
    if error.get("type") == "missing":
        message = f"Missing required parameter: {field}"
    else:
        message = f"Invalid parameter {field}: {error.get('msg', 'invalid value')}"
    logger.warning(f"Invalid request to {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"success": False, "error": message})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        logger.warning(f"404 - Not Found - {request.url.path}")
        return JSONResponse(status_code=404, content={"success": False, "error": "Not Found"})
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Server error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Something went wrong!"},
    )


def get_app(context: Optional[GatewayContext] = None) -> FastAPI:
    """
    Get FastAPI application.

    This is the main constructor of an application.

    :param context: prebuilt gateway context; built at startup when omitted.
    :return: application.
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan_setup,
        docs_url="/api-docs",
        redoc_url=None,
        openapi_url="/api-docs/openapi.json",
    )
    if context is not None:
        app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router=api_router)

    return app
