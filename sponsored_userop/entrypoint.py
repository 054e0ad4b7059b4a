import logging
from typing import Any

from sponsored_userop.exceptions import EthClientException
from sponsored_userop.typing import Address
from sponsored_userop.utils.decode import decode_uint256_result
from sponsored_userop.utils.encode import encode_get_nonce_calldata
from sponsored_userop.utils.eth_client_utils import \
    RpcClient, get_rpc_error_message

DEFAULT_ENTRYPOINT_V6 = Address("0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789")


async def eth_call(
    chain_rpc: RpcClient, to: str, call_data: str, block: str = "latest"
) -> dict[str, Any]:
    return await chain_rpc.send(
        "eth_call",
        [
            {
                "to": to,
                "data": call_data,
            },
            block,
        ],
    )


async def is_deployed(chain_rpc: RpcClient, address: Address) -> bool:
    code_res = await chain_rpc.send("eth_getCode", [address, "latest"])
    if "result" not in code_res:
        raise EthClientException(
            "eth_getCode",
            f"eth_getCode failed: {get_rpc_error_message(code_res)}",
            code_res,
        )
    return code_res["result"] not in ("0x", "0x0", "")


async def get_nonce(
    chain_rpc: RpcClient,
    entrypoint: Address,
    sender: Address,
    key: int = 0,
) -> int:
    result = await eth_call(
        chain_rpc, entrypoint, encode_get_nonce_calldata(sender, key))
    if "result" not in result:
        logging.error(f"getNonce failed for sender {sender}")
        raise EthClientException(
            "eth_call",
            f"getNonce failed: {get_rpc_error_message(result)}",
            result,
        )
    return decode_uint256_result(result["result"])
