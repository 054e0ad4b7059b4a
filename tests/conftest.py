from collections import deque
from typing import Any

import pytest
from eth_account import Account

from sponsored_userop.entrypoint import DEFAULT_ENTRYPOINT_V6
from sponsored_userop.user_operation.models import GasParameters
from sponsored_userop.user_operation.builder import build_user_operation

OWNER_PRIVATE_KEY = (
    "0x897368deaa9f3797c02570ef7d3fa4df179b0fc7ad8d8fc2547d04701604eb72")
FACTORY = "0x9406Cc6185a346906296840746125a0E44976454"
SENDER = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
TARGET = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
CHAIN_ID = 59140


def sender_address_result(address: str) -> str:
    """SenderAddressResult(address) revert payload."""
    return "0x6ca7b806" + "0" * 24 + address[2:].lower()


class FakeRpcClient:
    """
    Scripted stand in for RpcClient.

    responses maps a method to either a callable(params), a list of
    responses served in order (the last one repeats) or a single
    response. An Exception instance in place of a response is raised.
    """

    def __init__(self, responses: dict[str, Any], url="http://fake/rpc"):
        self.nodes_urls = [url]
        self.calls: list[tuple[str, Any]] = []
        self.responses = {
            method: deque(response) if isinstance(response, list)
            else response
            for method, response in responses.items()
        }

    def count(self, method: str) -> int:
        return len([call for call in self.calls if call[0] == method])

    async def send(self, method: str, params=None) -> Any:
        self.calls.append((method, params))
        if method not in self.responses:
            raise AssertionError(f"unexpected rpc call {method}")

        response = self.responses[method]
        if isinstance(response, deque):
            response = response.popleft() if len(response) > 1 \
                else response[0]
        elif callable(response):
            response = response(params)

        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def owner():
    return Account.from_key(OWNER_PRIVATE_KEY)


@pytest.fixture
def entrypoint():
    return DEFAULT_ENTRYPOINT_V6


@pytest.fixture
def gas_parameters():
    return GasParameters(
        call_gas_limit=100_000,
        verification_gas_limit=400_000,
        pre_verification_gas=50_000,
        max_fee_per_gas=1_000_000_000,
        max_priority_fee_per_gas=100_000_000,
    )


@pytest.fixture
def user_operation(gas_parameters):
    return build_user_operation(
        SENDER,
        0,
        "0x",
        "0x68656c6c6f",
        gas_parameters,
    )


@pytest.fixture
def sponsored_user_operation(user_operation):
    user_operation.apply_sponsorship(bytes.fromhex("deadbeef"))
    return user_operation
