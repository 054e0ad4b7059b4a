import asyncio
import json
import logging
import traceback
from typing import Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from sponsored_userop.exceptions import RpcTransportException


async def send_rpc_request_to_eth_client(
    nodes_urls: list[str],
    method: str,
    params=None,
    number_of_retry_attempts: int = 1,
    retry_interval: float = 1,
    headers: dict[str, str] | None = None,
    timeout: float = 30,
) -> Any:
    """
    Send a JSON-RPC request and return the decoded response object.

    Only transport failures are retried (rotating through nodes_urls);
    a response carrying a JSON-RPC "error" object is returned as is and
    left to the caller to interpret.
    """
    json_request = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": method,
        "params": params if params is not None else [],
    }
    request_headers = {
        "content-type": "application/json",
        "connection": "keep-alive"
    }
    if headers is not None:
        request_headers.update(headers)

    nodes_len = len(nodes_urls)
    if nodes_len == 0:
        raise RpcTransportException(method, "No rpc url configured")

    last_error = ""
    for i in range(number_of_retry_attempts):
        node_index = i % nodes_len
        if nodes_len > 1 and i > 0:
            logging.info(f"retrying with node no: {node_index + 1}.")
        chosen_node_url = nodes_urls[node_index]
        try:
            async with ClientSession(
                timeout=ClientTimeout(total=timeout)
            ) as session:
                async with session.post(
                    chosen_node_url,
                    json=json_request,
                    headers=request_headers
                ) as response:
                    resp = await response.read()
                    json_result = json.loads(resp)
        except json.decoder.JSONDecodeError:
            last_error = "Invalid json response from rpc endpoint."
            logging.error(
                f"Attempt No. {i+1} to call {method} failed. {last_error}"
            )
        except (ClientError, asyncio.TimeoutError) as excp:
            last_error = str(excp) or type(excp).__name__
            logging.error(
                f"Attempt No. {i+1} to call {method} failed. "
                f"error: {last_error}"
            )
            logging.debug(f"traceback: {str(traceback.format_exc())}")
        else:
            if isinstance(json_result, dict):
                return json_result
            last_error = f"Unexpected rpc response: {str(json_result)}"
            logging.error(
                f"Attempt No. {i+1} to call {method} failed. {last_error}"
            )

        if i + 1 < number_of_retry_attempts:
            await asyncio.sleep(retry_interval)

    raise RpcTransportException(
        method, f"Failed rpc request {method}: {last_error}")


class RpcClient:
    """Read-only handle on one JSON-RPC service (node, paymaster or bundler)."""

    nodes_urls: list[str]
    number_of_retry_attempts: int
    retry_interval: float
    headers: dict[str, str] | None
    timeout: float

    def __init__(
        self,
        nodes_urls: list[str] | str,
        number_of_retry_attempts: int = 1,
        retry_interval: float = 1,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
    ):
        if isinstance(nodes_urls, str):
            nodes_urls = [nodes_urls]
        self.nodes_urls = nodes_urls
        self.number_of_retry_attempts = number_of_retry_attempts
        self.retry_interval = retry_interval
        self.headers = headers
        self.timeout = timeout

    async def send(self, method: str, params=None) -> dict[str, Any]:
        return await send_rpc_request_to_eth_client(
            self.nodes_urls,
            method,
            params,
            self.number_of_retry_attempts,
            self.retry_interval,
            self.headers,
            self.timeout,
        )


def get_rpc_error_message(json_result: dict[str, Any]) -> str:
    error = json_result.get("error")
    if isinstance(error, dict) and "message" in error:
        return str(error["message"])
    return str(error)


def get_rpc_error_code(json_result: dict[str, Any]) -> int | None:
    error = json_result.get("error")
    if isinstance(error, dict) and isinstance(error.get("code"), int):
        return error["code"]
    return None
