from typing import Any

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_bytes

USER_OPERATION_V6_ABI = (
    "(address,uint256,bytes,bytes,uint256,uint256,uint256,uint256,uint256,bytes,bytes)"
)

CREATE_ACCOUNT_SELECTOR = function_signature_to_4byte_selector(
    "createAccount(address,uint256)")
EXECUTE_SELECTOR = function_signature_to_4byte_selector(
    "execute(address,uint256,bytes)")
GET_SENDER_ADDRESS_SELECTOR = function_signature_to_4byte_selector(
    "getSenderAddress(bytes)")
GET_NONCE_SELECTOR = function_signature_to_4byte_selector(
    "getNonce(address,uint192)")
GET_USER_OP_HASH_SELECTOR = function_signature_to_4byte_selector(
    f"getUserOpHash({USER_OPERATION_V6_ABI})")


def encode_create_account_calldata(owner: str, salt: int) -> bytes:
    return CREATE_ACCOUNT_SELECTOR + encode(
        ["address", "uint256"], [owner, salt])


def encode_init_code(factory: str, owner: str, salt: int) -> bytes:
    # factory address followed by the factory call
    return to_bytes(hexstr=factory) + encode_create_account_calldata(
        owner, salt)


def encode_execute_calldata(to: str, value: int, data: bytes) -> bytes:
    return EXECUTE_SELECTOR + encode(
        ["address", "uint256", "bytes"], [to, value, data])


def encode_get_sender_address_calldata(init_code: bytes) -> str:
    return "0x" + (
        GET_SENDER_ADDRESS_SELECTOR + encode(["bytes"], [init_code])
    ).hex()


def encode_get_nonce_calldata(sender: str, key: int = 0) -> str:
    return "0x" + (
        GET_NONCE_SELECTOR + encode(["address", "uint192"], [sender, key])
    ).hex()


def encode_get_user_op_hash_calldata(
    user_operation_list: list[Any]
) -> str:
    return "0x" + (
        GET_USER_OP_HASH_SELECTOR +
        encode([USER_OPERATION_V6_ABI], [user_operation_list])
    ).hex()
