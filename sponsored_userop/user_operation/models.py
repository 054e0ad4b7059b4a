from dataclasses import dataclass
from typing import Any

from sponsored_userop.typing import Address, TransactionHash, UserOperationHash
from sponsored_userop.user_operation.user_operation import UserOperation


@dataclass(frozen=True)
class GasParameters:
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass(frozen=True)
class UserOperationDraft:
    sender_address: Address
    nonce: int
    init_code: bytes
    call_data: bytes


@dataclass
class PipelineResult:
    user_operation: UserOperation
    user_operation_hash: UserOperationHash
    receipt: dict[str, Any]
    transaction_hash: TransactionHash
