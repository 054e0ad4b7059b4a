import re
from dataclasses import dataclass
from typing import Any

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from sponsored_userop.exceptions import (
    OperationStateException, ValidationException, ValidationExceptionCode)
from sponsored_userop.typing import Address, UserOperationHash

USER_OPERATION_FIELDS = [
    "sender",
    "nonce",
    "initCode",
    "callData",
    "callGasLimit",
    "verificationGasLimit",
    "preVerificationGas",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "paymasterAndData",
    "signature",
]


@dataclass()
class UserOperation:
    """
    EntryPoint v0.6 UserOperation.

    Numeric fields are held as int and byte fields as bytes; the hex
    string form only exists on the wire (get_user_operation_json).
    Once a signature is set the operation is frozen.
    """
    sender_address: Address
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: bytes = b""
    signature: bytes = b""

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("signature"):
            raise OperationStateException(
                f"UserOperation is signed, {name} can't be modified"
            )
        super().__setattr__(name, value)

    @classmethod
    def from_json(
        cls, jsonRequestDict: dict[str, Any]
    ) -> "UserOperation":
        if len(jsonRequestDict) != 11:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                "Invalid UserOperation",
            )
        cls.verify_fields_exist(jsonRequestDict)

        return cls(
            sender_address=verify_and_get_address(
                "sender", jsonRequestDict["sender"]),
            nonce=verify_and_get_uint(
                "nonce", jsonRequestDict["nonce"]),
            init_code=verify_and_get_bytes(
                "initCode", jsonRequestDict["initCode"]),
            call_data=verify_and_get_bytes(
                "callData", jsonRequestDict["callData"]),
            call_gas_limit=verify_and_get_uint(
                "callGasLimit", jsonRequestDict["callGasLimit"]),
            verification_gas_limit=verify_and_get_uint(
                "verificationGasLimit",
                jsonRequestDict["verificationGasLimit"]),
            pre_verification_gas=verify_and_get_uint(
                "preVerificationGas", jsonRequestDict["preVerificationGas"]),
            max_fee_per_gas=verify_and_get_uint(
                "maxFeePerGas", jsonRequestDict["maxFeePerGas"]),
            max_priority_fee_per_gas=verify_and_get_uint(
                "maxPriorityFeePerGas",
                jsonRequestDict["maxPriorityFeePerGas"]),
            paymaster_and_data=verify_and_get_bytes(
                "paymasterAndData", jsonRequestDict["paymasterAndData"]),
            signature=verify_and_get_bytes(
                "signature", jsonRequestDict["signature"]),
        )

    @staticmethod
    def verify_fields_exist(jsonRequestDict: dict[str, Any]) -> None:
        for field in USER_OPERATION_FIELDS:
            if field not in jsonRequestDict:
                raise ValidationException(
                    ValidationExceptionCode.InvalidFields,
                    f"UserOperation missing {field} field",
                )

    @property
    def is_sponsored(self) -> bool:
        return len(self.paymaster_and_data) > 0

    @property
    def is_signed(self) -> bool:
        return len(self.signature) > 0

    def apply_sponsorship(
        self,
        paymaster_and_data: bytes,
        call_gas_limit: int | None = None,
        verification_gas_limit: int | None = None,
        pre_verification_gas: int | None = None,
    ) -> None:
        if self.is_signed:
            raise OperationStateException(
                "Can't sponsor a signed UserOperation")
        if self.is_sponsored:
            raise OperationStateException(
                "UserOperation is already sponsored")
        if len(paymaster_and_data) == 0:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                "Empty paymasterAndData",
            )
        # the paymaster signature covers the gas limits it returned
        if call_gas_limit is not None:
            self.call_gas_limit = call_gas_limit
        if verification_gas_limit is not None:
            self.verification_gas_limit = verification_gas_limit
        if pre_verification_gas is not None:
            self.pre_verification_gas = pre_verification_gas
        self.paymaster_and_data = paymaster_and_data

    def apply_signature(self, signature: bytes) -> None:
        if self.is_signed:
            raise OperationStateException(
                "UserOperation is already signed")
        if len(signature) == 0:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                "Empty signature",
            )
        self.signature = signature

    def get_user_operation_json(self) -> dict[str, Address | str]:
        return {
            "sender": self.sender_address,
            "nonce": hex(self.nonce),
            "initCode": "0x" + self.init_code.hex(),
            "callData": "0x" + self.call_data.hex(),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }

    def to_list(self) -> list[Address | int | bytes]:
        return [
            self.sender_address,
            self.nonce,
            self.init_code,
            self.call_data,
            self.call_gas_limit,
            self.verification_gas_limit,
            self.pre_verification_gas,
            self.max_fee_per_gas,
            self.max_priority_fee_per_gas,
            self.paymaster_and_data,
            self.signature,
        ]


def get_user_operation_hash(
    user_operation_list: list, entrypoint_addr: str, chain_id: int
) -> UserOperationHash:
    packed_user_operation = keccak(
        pack_user_operation(user_operation_list)
    )

    encoded_user_operation_hash = encode(
        ["(bytes32,address,uint256)"],
        [[packed_user_operation, entrypoint_addr, chain_id]],
    )
    return UserOperationHash(
        "0x" + keccak(encoded_user_operation_hash).hex())


def pack_user_operation(user_operation_list: list) -> bytes:
    # initCode, callData and paymasterAndData are hashed, signature dropped
    packed_list = list(user_operation_list[:-1])
    packed_list[2] = keccak(packed_list[2])
    packed_list[3] = keccak(packed_list[3])
    packed_list[9] = keccak(packed_list[9])

    return encode(
        [
            "address",
            "uint256",
            "bytes32",
            "bytes32",
            "uint256",
            "uint256",
            "uint256",
            "uint256",
            "uint256",
            "bytes32",
        ],
        packed_list,
    )


def verify_and_get_address(field_name: str, value: Address | None) -> Address:
    address_pattern = "^0x[0-9a-fA-F]{40}$"
    if isinstance(value, str) and re.match(address_pattern, value) is not None:
        return Address(to_checksum_address(value))
    else:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid address value : {value} in field {field_name}",
        )


def verify_and_get_uint(field_name: str, value: str | int | None) -> int:
    if value is None:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint hex value in field {field_name}",
        )

    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0 or value >= 2**256:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Invalid uint value : {value} in field {field_name}",
            )
        return value
    elif value == "0x":
        return 0
    elif isinstance(value, str) and value[:2] == "0x":
        try:
            return int(value, 16)
        except ValueError:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Invalid uint hex value : {value} in field {field_name}",
            )
    else:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint hex value : {value} in field {field_name}",
        )


def verify_and_get_bytes(field_name: str, value: str | bytes | None) -> bytes:
    if value is None:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid bytes hex value in field {field_name}",
        )

    if isinstance(value, bytes):
        return value
    elif isinstance(value, str) and value[:2] == "0x":
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Invalid bytes hex value : {value} in field {field_name}",
            )
    else:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid bytes hex value : {value} in field {field_name}",
        )


def is_user_operation_hash(user_operation_hash: Any) -> bool:
    hash_pattern = "^0x[0-9a-fA-F]{64}$"
    return (
        isinstance(user_operation_hash, str)
        and re.match(hash_pattern, user_operation_hash) is not None
    )
