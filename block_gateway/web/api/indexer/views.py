from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from block_gateway.chain_service import checksum_address
from block_gateway.context import GatewayContext
from block_gateway.web.dependencies import get_context

router = APIRouter()


def _ok(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": True, "data": data}


@router.get("/account/tokens/{address}")
async def account_tokens(
    address: str,
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    address = checksum_address(address, "Invalid address")
    return _ok(await context.indexer.get_account_tokens(address))


@router.get("/account/nfts/{address}")
async def account_nfts(
    address: str,
    page_index: int = Query(1, alias="pageIndex", ge=1),
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    address = checksum_address(address, "Invalid address")
    return _ok(await context.indexer.get_account_nfts(address, page_index))


@router.get("/account/activities/{address}")
async def account_activities(
    address: str,
    limit: int = Query(20, ge=1),
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    address = checksum_address(address, "Invalid address")
    return _ok(await context.indexer.get_account_activities(address, limit))


@router.get("/account/transactions/{address}")
async def account_transactions(
    address: str,
    limit: int = Query(20, ge=1),
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    address = checksum_address(address, "Invalid address")
    return _ok(await context.indexer.get_account_transactions(address, limit))


@router.get("/account/internal/transactions/{address}")
async def account_internal_transactions(
    address: str,
    filter: str = Query("all"),
    limit: int = Query(20, ge=1),
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    address = checksum_address(address, "Invalid address")
    return _ok(await context.indexer.get_account_internal_transactions(address, filter, limit))


@router.get("/token/activities/{address}/{token_address}")
async def token_activities(
    address: str,
    token_address: str,
    limit: int = Query(20, ge=1),
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    address = checksum_address(address, "Invalid address")
    token_address = checksum_address(token_address, "Invalid tokenAddress")
    return _ok(await context.indexer.get_token_activities(address, token_address, limit))


@router.get("/collection/activities/{address}/{collection_address}")
async def collection_activities(
    address: str,
    collection_address: str,
    limit: int = Query(20, ge=1),
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    address = checksum_address(address, "Invalid address")
    collection_address = checksum_address(collection_address, "Invalid collectionAddress")
    return _ok(
        await context.indexer.get_collection_activities(address, collection_address, limit),
    )


@router.get("/token/holders/{contract_address}")
async def token_holders(
    contract_address: str,
    page_index: int = Query(1, alias="pageIndex", ge=1),
    page_size: int = Query(20, alias="pageSize", ge=1),
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    contract_address = checksum_address(contract_address, "Invalid contractAddress")
    return _ok(await context.indexer.get_token_holders(contract_address, page_index, page_size))


@router.get("/native/holders")
async def native_holders(
    page_index: int = Query(1, alias="pageIndex", ge=1),
    page_size: int = Query(20, alias="pageSize", ge=1),
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    return _ok(await context.indexer.get_native_holders(page_index, page_size))


@router.get("/collection/holders/{contract_address}")
async def collection_holders(
    contract_address: str,
    page_index: int = Query(1, alias="pageIndex", ge=1),
    page_size: int = Query(20, alias="pageSize", ge=1),
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    contract_address = checksum_address(contract_address, "Invalid contractAddress")
    return _ok(
        await context.indexer.get_collection_holders(contract_address, page_index, page_size),
    )


@router.get("/contract/source/code/{address}")
async def contract_source_code(
    address: str,
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    address = checksum_address(address, "Invalid address")
    return _ok(await context.indexer.get_contract_source_code(address))


@router.get("/token/gating/{account}/{contract_address}")
async def token_gating(
    account: str,
    contract_address: str,
    context: GatewayContext = Depends(get_context),
) -> Dict[str, Any]:
    account = checksum_address(account, "Invalid account")
    contract_address = checksum_address(contract_address, "Invalid contractAddress")
    return _ok(await context.indexer.get_token_gating(account, contract_address))
