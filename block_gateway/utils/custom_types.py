from typing import Annotated, Any

from eth_utils import is_address, to_checksum_address
from pydantic import AfterValidator, BeforeValidator, PlainSerializer


def _parse_quantity(value: Any) -> Any:
    if value is None:
        return 0
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return value


def _checksum(value: str) -> str:
    if not is_address(value):
        raise ValueError("Invalid address format")
    return to_checksum_address(value)


# JSON-RPC quantity ("0x1a") in, decimal string out.
# Block numbers may exceed 2**53, so they never travel as JSON numbers.
HexInt = Annotated[
    int,
    BeforeValidator(_parse_quantity),
    PlainSerializer(lambda x: f"{x}", return_type=str, when_used="json"),
]

Address = Annotated[str, AfterValidator(_checksum)]
