"""
Counterfactual sender address derivation.

EntryPoint.getSenderAddress(initCode) always reverts with
SenderAddressResult(address); the revert payload is the return channel.
"""
from dataclasses import dataclass
import logging
import re
from typing import Any

from eth_utils import to_checksum_address

from sponsored_userop.entrypoint import eth_call
from sponsored_userop.exceptions import \
    AddressDerivationFailed, ProtocolViolation
from sponsored_userop.typing import Address
from sponsored_userop.utils.decode import decode_revert_reason
from sponsored_userop.utils.encode import encode_get_sender_address_calldata
from sponsored_userop.utils.eth_client_utils import RpcClient

SENDER_ADDRESS_RESULT_SELECTOR = "0x6ca7b806"  # SenderAddressResult(address)


@dataclass(frozen=True)
class ProbeReverted:
    revert_data: str | None
    raw_response: dict[str, Any]


@dataclass(frozen=True)
class ProbeReturned:
    result: Any
    raw_response: dict[str, Any]


def extract_revert_data(error: Any) -> str | None:
    if not isinstance(error, dict):
        return None
    data = error.get("data")
    # some nodes nest the revert payload one level down
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, str) and data[:2] == "0x":
        return data

    message = error.get("message")
    if isinstance(message, str):
        match = re.search(
            SENDER_ADDRESS_RESULT_SELECTOR + "[a-fA-F0-9]*", message)
        if match is not None:
            return match.group(0)
    return None


def parse_sender_address_result(revert_data: str | None) -> Address:
    if revert_data is None:
        raise AddressDerivationFailed(
            "getSenderAddress reverted without revert data", revert_data)

    selector = revert_data[:10].lower()
    if selector != SENDER_ADDRESS_RESULT_SELECTOR:
        reason = decode_revert_reason(revert_data)
        message = f"Unexpected getSenderAddress revert selector {selector}"
        if reason is not None:
            message += f" with reason : {reason}"
        raise AddressDerivationFailed(message, revert_data)

    address_word = revert_data[10:74]
    if (
        len(address_word) != 64 or
        re.match("^[0-9a-fA-F]{64}$", address_word) is None
    ):
        raise AddressDerivationFailed(
            "SenderAddressResult payload is not a 32 bytes word", revert_data)
    if address_word[:24] != "0" * 24:
        raise AddressDerivationFailed(
            "SenderAddressResult payload is not a left padded address",
            revert_data,
        )

    return Address(to_checksum_address("0x" + address_word[24:]))


class AddressDeriver:
    chain_rpc: RpcClient
    entrypoint: Address
    sender_addresses: dict[bytes, Address]

    def __init__(self, chain_rpc: RpcClient, entrypoint: Address):
        self.chain_rpc = chain_rpc
        self.entrypoint = entrypoint
        self.sender_addresses = dict()

    async def probe_sender_address(
        self, init_code: bytes
    ) -> ProbeReverted | ProbeReturned:
        result = await eth_call(
            self.chain_rpc,
            self.entrypoint,
            encode_get_sender_address_calldata(init_code),
        )
        if "error" in result:
            return ProbeReverted(extract_revert_data(result["error"]), result)
        return ProbeReturned(result.get("result"), result)

    async def derive_sender_address(self, init_code: bytes) -> Address:
        if init_code in self.sender_addresses:
            return self.sender_addresses[init_code]

        logging.info("Calculating sender address...")
        probe = await self.probe_sender_address(init_code)
        if isinstance(probe, ProbeReturned):
            logging.critical("getSenderAddress didn't revert!")
            raise ProtocolViolation(
                "Expected getSenderAddress() to revert", probe.raw_response)

        sender_address = parse_sender_address_result(probe.revert_data)
        self.sender_addresses[init_code] = sender_address
        logging.info(f"Calculated sender address: {sender_address}")
        return sender_address
