from block_gateway.web.api.blockchain.views import router

__all__ = ["router"]
