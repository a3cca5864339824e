from block_gateway.web.api.monitoring.views import router

__all__ = ["router"]
