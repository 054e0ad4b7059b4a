from eth_abi import decode
from eth_abi.exceptions import DecodingError

ERROR_STRING_SELECTOR = "0x08c379a0"  # Error(string)


def decode_uint256_result(raw_result: str) -> int:
    return decode(["uint256"], bytes.fromhex(raw_result[2:]))[0]


def decode_bytes32_result(raw_result: str) -> bytes:
    return decode(["bytes32"], bytes.fromhex(raw_result[2:]))[0]


def decode_revert_reason(revert_data: str) -> str | None:
    """Return the Error(string) reason, or None for any other revert."""
    if revert_data[:10] != ERROR_STRING_SELECTOR:
        return None
    try:
        return decode(["string"], bytes.fromhex(revert_data[10:]))[0]
    except (DecodingError, ValueError):
        return None
