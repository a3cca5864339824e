from block_gateway.web.api.indexer.views import router

__all__ = ["router"]
