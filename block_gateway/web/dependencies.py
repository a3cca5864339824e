from starlette.requests import HTTPConnection

from block_gateway.context import GatewayContext


def get_context(connection: HTTPConnection) -> GatewayContext:
    """
    Returns the gateway context built at startup.

    Works for both HTTP requests and websocket connections.

    :param connection: current request or websocket.
    :return: gateway context.
    """
    return connection.app.state.context
