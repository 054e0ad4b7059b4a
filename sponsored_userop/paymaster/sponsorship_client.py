import logging
from typing import Any

from sponsored_userop.exceptions import (
    OperationStateException, RpcTransportException,
    SponsorshipResponseInvalid, SponsorshipUnavailable, ValidationException)
from sponsored_userop.typing import Address
from sponsored_userop.user_operation.user_operation import (
    UserOperation, verify_and_get_bytes, verify_and_get_uint)
from sponsored_userop.utils.eth_client_utils import \
    RpcClient, get_rpc_error_message

SPONSOR_USER_OPERATION_METHOD = "pm_sponsorUserOperation"


def get_paymaster_url(
    paymaster_base_url: str, paymaster_chain: str, paymaster_api_key: str
) -> str:
    return (
        f"{paymaster_base_url.rstrip('/')}/{paymaster_chain}"
        f"/rpc?apikey={paymaster_api_key}"
    )


class SponsorshipClient:
    """
    Verifying paymaster client.

    No retry is attempted: a sponsorship quote is time sensitive, so
    the caller decides whether to ask again.
    """

    paymaster_rpc: RpcClient
    entrypoint: Address

    def __init__(self, paymaster_rpc: RpcClient, entrypoint: Address):
        self.paymaster_rpc = paymaster_rpc
        self.entrypoint = entrypoint

    async def request_sponsorship(
        self, user_operation: UserOperation
    ) -> dict[str, Any]:
        if user_operation.is_signed or user_operation.is_sponsored:
            raise OperationStateException(
                "Only an unsponsored, unsigned UserOperation can be sponsored"
            )
        logging.info("Requesting paymaster sponsorship...")
        try:
            result = await self.paymaster_rpc.send(
                SPONSOR_USER_OPERATION_METHOD,
                [
                    user_operation.get_user_operation_json(),
                    {"entryPoint": self.entrypoint},
                ],
            )
        except RpcTransportException as excp:
            raise SponsorshipUnavailable(excp.message) from excp

        if "error" in result:
            raise SponsorshipUnavailable(
                "Paymaster rejected the sponsorship request: " +
                get_rpc_error_message(result),
                result,
            )
        if not isinstance(result.get("result"), dict):
            raise SponsorshipResponseInvalid(
                "Paymaster returned an invalid sponsorship payload", result)
        return result["result"]

    async def sponsor_user_operation(
        self, user_operation: UserOperation
    ) -> UserOperation:
        sponsorship = await self.request_sponsorship(user_operation)
        raw_response = {"result": sponsorship}

        if "paymasterAndData" not in sponsorship:
            raise SponsorshipResponseInvalid(
                "Paymaster response is missing paymasterAndData", raw_response)
        try:
            paymaster_and_data = verify_and_get_bytes(
                "paymasterAndData", sponsorship["paymasterAndData"])
            gas_overrides = {
                field_name: verify_and_get_uint(
                    json_name, sponsorship[json_name])
                for field_name, json_name in (
                    ("call_gas_limit", "callGasLimit"),
                    ("verification_gas_limit", "verificationGasLimit"),
                    ("pre_verification_gas", "preVerificationGas"),
                )
                if json_name in sponsorship
            }
        except ValidationException as excp:
            raise SponsorshipResponseInvalid(excp.message, raw_response)

        if len(paymaster_and_data) == 0:
            raise SponsorshipResponseInvalid(
                "Paymaster returned an empty paymasterAndData", raw_response)

        user_operation.apply_sponsorship(paymaster_and_data, **gas_overrides)
        logging.info(
            "Paymaster paymasterAndData: 0x" + paymaster_and_data.hex())
        return user_operation
