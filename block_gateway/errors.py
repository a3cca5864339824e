from typing import Any, Optional


class GatewayError(Exception):
    """Base class for every error raised by the gateway."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(GatewayError):
    """Required configuration is missing or malformed. Fatal at startup."""


class InvalidInputError(GatewayError):
    """The caller supplied a malformed argument."""

    status_code = 400


class NotFoundError(GatewayError):
    """A requested resource does not exist upstream."""

    status_code = 404


class BlockNotFoundError(NotFoundError):
    def __init__(self, block_number: Any) -> None:
        super().__init__("Block not found")
        self.block_number = block_number


class UpstreamError(GatewayError):
    """The chain RPC provider or the indexer API failed."""

    status_code = 502


class RPCError(UpstreamError):
    """A JSON-RPC error object returned by the provider."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class RateLimitError(UpstreamError):
    """The provider rejected the call because the request rate was exceeded."""

    status_code = 503


class TransactionTimeoutError(UpstreamError):
    status_code = 504

    def __init__(self, tx_hash: str) -> None:
        super().__init__("Transaction timed out")
        self.tx_hash = tx_hash


class SubscriptionError(UpstreamError):
    """The push subscription could not be established or was dropped."""


class SinkClosedError(GatewayError):
    """A subscriber's connection is gone and can no longer be written to."""


RATE_LIMIT_MARKERS = (
    "request limit reached",
    "rate limit",
    "too many requests",
)


def is_rate_limit_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)
