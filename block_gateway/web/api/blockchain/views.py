from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger

from block_gateway.context import GatewayContext
from block_gateway.errors import GatewayError, InvalidInputError
from block_gateway.models import ChatRequest, StoreDataRequest
from block_gateway.web.dependencies import get_context

router = APIRouter()


@router.get("/blockchain/latest-block")
async def latest_block(context: GatewayContext = Depends(get_context)) -> Dict[str, Any]:
    logger.info("Fetching latest block number")
    block_number = await context.chain.get_latest_block_number()
    return {"success": True, "data": {"blockNumber": str(block_number)}}


@router.get("/blockchain/analyze-block/{block_number}")
async def analyze_block(
    block_number: str,
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    analysis = await context.chain.analyze_block(block_number)
    return {"success": True, "data": analysis.model_dump(mode="json", by_alias=True)}


@router.get("/blockchain/balance/{address}")
async def balance(address: str, context: GatewayContext = Depends(get_context)) -> Dict[str, Any]:
    info = await context.chain.get_balance(address)
    return {"success": True, "data": info.model_dump(mode="json", by_alias=True)}


@router.post("/store-data")
async def store_data(
    body: StoreDataRequest,
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    """
    Stores a new greeting in the contract.

    Waits until the transaction is mined, so the call can take up to the
    configured transaction timeout.
    """
    result = await context.chain.store_data(body.value)
    return {"success": True, "data": result.model_dump(mode="json", by_alias=True)}


@router.get("/get-data")
async def get_data(context: GatewayContext = Depends(get_context)) -> Dict[str, Any]:
    logger.info("Attempting to retrieve greeting from contract")
    value = await context.chain.get_data()
    return {"success": True, "data": {"value": value}}


@router.post("/execute-chain")
async def execute_chain(
    body: StoreDataRequest,
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    """Stores a value, reads it back and reports the gas used by both."""
    result = await context.chain.execute_chain(body.value)
    return {"success": True, "data": result}


@router.get("/parallel-block-analysis")
async def parallel_block_analysis(
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    logger.info("Starting parallel block analysis request")
    blocks = await context.chain.parallel_block_analysis()
    return {
        "success": True,
        "data": {
            "analyzedBlocks": len(blocks),
            "blocks": [block.model_dump(mode="json", by_alias=True) for block in blocks],
        },
    }


@router.post("/chat")
async def chat(body: ChatRequest, context: GatewayContext = Depends(get_context)) -> JSONResponse:
    """
    Answers a plain-language question about accounts, tokens or blocks.

    Replies use ``reply`` instead of ``data``/``error``, including failures.
    """
    try:
        reply = await context.chat.reply(body.message)
    except InvalidInputError as exc:
        return JSONResponse(status_code=400, content={"success": False, "reply": exc.message})
    except GatewayError as exc:
        logger.error(f"Error in chat endpoint: {exc.message}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "reply": f"Oops, something went wrong: {exc.message}"},
        )
    return JSONResponse(content={"success": True, "reply": reply})
