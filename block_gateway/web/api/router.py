from fastapi.routing import APIRouter

from block_gateway.web.api import blockchain, indexer, monitoring, streams

api_router = APIRouter()
api_router.include_router(monitoring.router)
api_router.include_router(streams.router)
api_router.include_router(blockchain.router, prefix="/api")
api_router.include_router(indexer.router, prefix="/api")
