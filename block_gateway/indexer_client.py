from typing import Any, Dict, Optional

import aiohttp
from loguru import logger
from yarl import URL

from block_gateway.errors import NotFoundError, RateLimitError, UpstreamError


class IndexerClient:
    """
    Pass-through client for the BlockVision indexing API.

    Responses are returned exactly as the API sends them; the gateway does
    not reshape the indexer's data model.

    Attributes:
        base_url (URL): API root, e.g. https://api.blockvision.org/v2/monad.
        api_key (Optional[str]): Value of the ``x-api-key`` header.
        session (Optional[aiohttp.ClientSession]): HTTP session, created on first use.
    """

    def __init__(self, base_url: str, api_key: Optional[str], timeout: float = 30.0) -> None:
        self.base_url = URL(base_url)
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            headers = {"accept": "application/json"}
            if self.api_key:
                headers["x-api-key"] = self.api_key
            self.session = aiohttp.ClientSession(headers=headers, timeout=self.timeout)
        return self.session

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()

    async def _get(self, path: str, **params: Any) -> Dict[str, Any]:
        """
        GET ``path`` below the API root.

        Args:
            path (str): Endpoint path, e.g. "account/tokens".
            **params: Query parameters; None values are left out.

        Returns:
            Dict[str, Any]: Decoded JSON body.

        Raises:
            RateLimitError: On HTTP 429.
            NotFoundError: On HTTP 404.
            UpstreamError: On any other failure.
        """
        query = {key: str(value) for key, value in params.items() if value is not None}
        url = self.base_url / path
        logger.info(f"Fetching {path}: {query}")
        try:
            async with self._get_session().get(url, params=query) as response:
                if response.status == 429:
                    raise RateLimitError(f"Indexer rate limit reached for {path}")
                if response.status == 404:
                    raise NotFoundError(f"Indexer resource not found: {path}")
                if response.status != 200:
                    raise UpstreamError(
                        f"Indexer request {path} failed with status {response.status}",
                    )
                return await response.json(content_type=None)
        except aiohttp.ClientError as exc:
            logger.error(f"Failed to fetch {path}: {exc}")
            raise UpstreamError(f"Indexer request {path} failed: {exc}") from exc

    async def get_account_tokens(self, address: str) -> Dict[str, Any]:
        return await self._get("account/tokens", address=address)

    async def get_account_nfts(self, address: str, page_index: int = 1) -> Dict[str, Any]:
        return await self._get("account/nfts", address=address, pageIndex=page_index)

    async def get_account_activities(self, address: str, limit: int = 20) -> Dict[str, Any]:
        return await self._get("account/activities", address=address, limit=limit)

    async def get_account_transactions(self, address: str, limit: int = 20) -> Dict[str, Any]:
        return await self._get("account/transactions", address=address, limit=limit)

    async def get_account_internal_transactions(
        self,
        address: str,
        filter: str = "all",
        limit: int = 20,
    ) -> Dict[str, Any]:
        return await self._get(
            "account/internal/transactions", address=address, filter=filter, limit=limit,
        )

    async def get_token_activities(
        self,
        address: str,
        token_address: str,
        limit: int = 20,
    ) -> Dict[str, Any]:
        return await self._get(
            "token/activities", address=address, tokenAddress=token_address, limit=limit,
        )

    async def get_collection_activities(
        self,
        address: str,
        collection_address: str,
        limit: int = 20,
    ) -> Dict[str, Any]:
        return await self._get(
            "collection/activities",
            address=address,
            collectionAddress=collection_address,
            limit=limit,
        )

    async def get_token_holders(
        self,
        contract_address: str,
        page_index: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        return await self._get(
            "token/holders",
            contractAddress=contract_address,
            pageIndex=page_index,
            pageSize=page_size,
        )

    async def get_native_holders(self, page_index: int = 1, page_size: int = 20) -> Dict[str, Any]:
        return await self._get("native/holders", pageIndex=page_index, pageSize=page_size)

    async def get_collection_holders(
        self,
        contract_address: str,
        page_index: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        return await self._get(
            "collection/holders",
            contractAddress=contract_address,
            pageIndex=page_index,
            pageSize=page_size,
        )

    async def get_contract_source_code(self, address: str) -> Dict[str, Any]:
        return await self._get("contract/source/code", address=address)

    async def get_token_gating(self, account: str, contract_address: str) -> Dict[str, Any]:
        return await self._get("token/gating", account=account, contractAddress=contract_address)
