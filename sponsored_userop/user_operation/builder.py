from sponsored_userop.typing import Address
from sponsored_userop.user_operation.models import GasParameters
from sponsored_userop.user_operation.user_operation import (
    UserOperation, verify_and_get_address, verify_and_get_bytes,
    verify_and_get_uint)
from sponsored_userop.utils.encode import \
    encode_execute_calldata, encode_init_code


def build_user_operation(
    sender: Address | str,
    nonce: int | str,
    init_code: bytes | str,
    call_data: bytes | str,
    gas_parameters: GasParameters,
) -> UserOperation:
    """
    Assemble an unsponsored, unsigned UserOperation.

    Raises ValidationException(InvalidFields) on malformed input.
    """
    return UserOperation(
        sender_address=verify_and_get_address("sender", sender),
        nonce=verify_and_get_uint("nonce", nonce),
        init_code=verify_and_get_bytes("initCode", init_code),
        call_data=verify_and_get_bytes("callData", call_data),
        call_gas_limit=verify_and_get_uint(
            "callGasLimit", gas_parameters.call_gas_limit),
        verification_gas_limit=verify_and_get_uint(
            "verificationGasLimit", gas_parameters.verification_gas_limit),
        pre_verification_gas=verify_and_get_uint(
            "preVerificationGas", gas_parameters.pre_verification_gas),
        max_fee_per_gas=verify_and_get_uint(
            "maxFeePerGas", gas_parameters.max_fee_per_gas),
        max_priority_fee_per_gas=verify_and_get_uint(
            "maxPriorityFeePerGas", gas_parameters.max_priority_fee_per_gas),
        paymaster_and_data=b"",
        signature=b"",
    )


def build_init_code(
    factory: Address | str, owner: Address | str, salt: int
) -> bytes:
    return encode_init_code(
        verify_and_get_address("factory", factory),
        verify_and_get_address("owner", owner),
        verify_and_get_uint("salt", salt),
    )


def build_execute_call_data(
    to: Address | str, value: int, data: bytes | str
) -> bytes:
    return encode_execute_calldata(
        verify_and_get_address("to", to),
        verify_and_get_uint("value", value),
        verify_and_get_bytes("data", data),
    )
