from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from prometheus_fastapi_instrumentator.instrumentation import (
    PrometheusFastApiInstrumentator,
)

from block_gateway.config import settings
from block_gateway.context import GatewayContext


def setup_prometheus(app: FastAPI) -> None:  # pragma: no cover
    """
    Enables prometheus integration.

    :param app: current application.
    """
    PrometheusFastApiInstrumentator(should_group_status_codes=False).instrument(
        app,
    ).expose(app, should_gzip=True, name="prometheus_metrics")


@asynccontextmanager
async def lifespan_setup(
    app: FastAPI,
) -> AsyncGenerator[None, None]:
    """
    Actions to run on application startup.

    Builds the gateway context (unless one was injected before startup),
    stores it in the app state and tears it down on shutdown.

    :param app: the fastAPI application.
    :return: function that actually performs actions.
    """
    context = getattr(app.state, "context", None)
    if context is None:
        context = GatewayContext(settings)
        app.state.context = context

    if settings.enable_metrics:
        app.middleware_stack = None
        setup_prometheus(app)
        app.middleware_stack = app.build_middleware_stack()

    await context.start()
    yield
    await context.close()
