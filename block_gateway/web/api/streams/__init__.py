from block_gateway.web.api.streams.views import router

__all__ = ["router"]
