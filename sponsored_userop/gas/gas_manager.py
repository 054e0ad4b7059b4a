from abc import ABC, abstractmethod
import asyncio
import logging
import math
from typing import Any

from sponsored_userop.exceptions import EthClientException
from sponsored_userop.user_operation.models import \
    GasParameters, UserOperationDraft
from sponsored_userop.utils.eth_client_utils import \
    RpcClient, get_rpc_error_message

DEFAULT_CALL_GAS_LIMIT = 100_000
DEFAULT_VERIFICATION_GAS_LIMIT = 400_000
DEFAULT_PRE_VERIFICATION_GAS = 50_000


class FeeManager:
    chain_rpc: RpcClient
    is_legacy_mode: bool
    max_fee_per_gas_percentage_multiplier: int
    max_priority_fee_per_gas_percentage_multiplier: int

    def __init__(
        self,
        chain_rpc: RpcClient,
        is_legacy_mode: bool = False,
        max_fee_per_gas_percentage_multiplier: int = 100,
        max_priority_fee_per_gas_percentage_multiplier: int = 100,
    ):
        self.chain_rpc = chain_rpc
        self.is_legacy_mode = is_legacy_mode
        self.max_fee_per_gas_percentage_multiplier = (
            max_fee_per_gas_percentage_multiplier
        )
        self.max_priority_fee_per_gas_percentage_multiplier = (
            max_priority_fee_per_gas_percentage_multiplier
        )

    async def get_fee_parameters(self) -> tuple[int, int]:
        """
        Return (max_fee_per_gas, max_priority_fee_per_gas).

        In legacy mode both are eth_gasPrice. Otherwise the priority fee
        comes from eth_maxPriorityFeePerGas and is capped at max fee.
        """
        tasks_arr = [self.chain_rpc.send("eth_gasPrice", [])]

        if not self.is_legacy_mode:
            tasks_arr.append(
                self.chain_rpc.send("eth_maxPriorityFeePerGas", []))

        tasks: Any = await asyncio.gather(*tasks_arr)

        block_max_fee_per_gas = math.ceil(
            get_hex_result("eth_gasPrice", tasks[0]) * (
                self.max_fee_per_gas_percentage_multiplier / 100)
        )

        if self.is_legacy_mode:
            return block_max_fee_per_gas, block_max_fee_per_gas

        block_max_priority_fee_per_gas = math.ceil(
            get_hex_result("eth_maxPriorityFeePerGas", tasks[1]) * (
                self.max_priority_fee_per_gas_percentage_multiplier / 100)
        )

        # max priority fee per gas can't be higher than max fee per gas
        if block_max_priority_fee_per_gas > block_max_fee_per_gas:
            block_max_priority_fee_per_gas = block_max_fee_per_gas

        return block_max_fee_per_gas, block_max_priority_fee_per_gas


class GasEstimationPolicy(ABC):
    @abstractmethod
    async def estimate(
        self, user_operation_draft: UserOperationDraft
    ) -> GasParameters:
        pass


class FixedGasEstimationPolicy(GasEstimationPolicy):
    """Fixed, deliberately high gas limits with fees from the chain."""

    fee_manager: FeeManager
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int

    def __init__(
        self,
        fee_manager: FeeManager,
        call_gas_limit: int = DEFAULT_CALL_GAS_LIMIT,
        verification_gas_limit: int = DEFAULT_VERIFICATION_GAS_LIMIT,
        pre_verification_gas: int = DEFAULT_PRE_VERIFICATION_GAS,
    ):
        self.fee_manager = fee_manager
        self.call_gas_limit = call_gas_limit
        self.verification_gas_limit = verification_gas_limit
        self.pre_verification_gas = pre_verification_gas

    async def estimate(
        self, user_operation_draft: UserOperationDraft
    ) -> GasParameters:
        (
            max_fee_per_gas,
            max_priority_fee_per_gas,
        ) = await self.fee_manager.get_fee_parameters()
        logging.debug(
            f"Gas fees for {user_operation_draft.sender_address}: "
            f"maxFeePerGas {hex(max_fee_per_gas)} "
            f"maxPriorityFeePerGas {hex(max_priority_fee_per_gas)}"
        )
        return GasParameters(
            call_gas_limit=self.call_gas_limit,
            verification_gas_limit=self.verification_gas_limit,
            pre_verification_gas=self.pre_verification_gas,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
        )


def get_hex_result(method: str, json_result: dict[str, Any]) -> int:
    if "result" not in json_result or not isinstance(
            json_result["result"], str):
        raise EthClientException(
            method,
            f"{method} failed: {get_rpc_error_message(json_result)}",
            json_result,
        )
    try:
        return int(json_result["result"], 16)
    except ValueError:
        raise EthClientException(
            method,
            f"{method} returned an invalid value {json_result['result']}",
            json_result,
        )
