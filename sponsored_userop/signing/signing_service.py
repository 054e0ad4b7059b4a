from abc import ABC, abstractmethod
import logging

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils import to_bytes

from sponsored_userop.entrypoint import eth_call
from sponsored_userop.exceptions import (
    EthClientException, OperationStateException, SigningFailed)
from sponsored_userop.typing import Address, UserOperationHash
from sponsored_userop.user_operation.user_operation import (
    UserOperation, get_user_operation_hash)
from sponsored_userop.utils.decode import decode_bytes32_result
from sponsored_userop.utils.encode import encode_get_user_op_hash_calldata
from sponsored_userop.utils.eth_client_utils import \
    RpcClient, get_rpc_error_message


class UserOperationHasher(ABC):
    @abstractmethod
    async def get_user_operation_hash(
        self, user_operation: UserOperation
    ) -> UserOperationHash:
        pass


class LocalUserOperationHasher(UserOperationHasher):
    """EntryPoint v0.6 getUserOpHash computed off-chain."""

    entrypoint: Address
    chain_id: int

    def __init__(self, entrypoint: Address, chain_id: int):
        self.entrypoint = entrypoint
        self.chain_id = chain_id

    async def get_user_operation_hash(
        self, user_operation: UserOperation
    ) -> UserOperationHash:
        return get_user_operation_hash(
            user_operation.to_list(), self.entrypoint, self.chain_id)


class EntryPointUserOperationHasher(UserOperationHasher):
    """Asks the deployed EntryPoint for getUserOpHash."""

    chain_rpc: RpcClient
    entrypoint: Address

    def __init__(self, chain_rpc: RpcClient, entrypoint: Address):
        self.chain_rpc = chain_rpc
        self.entrypoint = entrypoint

    async def get_user_operation_hash(
        self, user_operation: UserOperation
    ) -> UserOperationHash:
        result = await eth_call(
            self.chain_rpc,
            self.entrypoint,
            encode_get_user_op_hash_calldata(user_operation.to_list()),
        )
        if "result" not in result:
            raise EthClientException(
                "eth_call",
                f"getUserOpHash failed: {get_rpc_error_message(result)}",
                result,
            )
        return UserOperationHash(
            "0x" + decode_bytes32_result(result["result"]).hex())


class SigningService:
    owner: LocalAccount | None
    user_operation_hasher: UserOperationHasher
    require_sponsorship: bool

    def __init__(
        self,
        owner: LocalAccount | None,
        user_operation_hasher: UserOperationHasher,
        require_sponsorship: bool = True,
    ):
        self.owner = owner
        self.user_operation_hasher = user_operation_hasher
        self.require_sponsorship = require_sponsorship

    async def sign_user_operation(
        self, user_operation: UserOperation
    ) -> UserOperation:
        if user_operation.is_signed:
            raise OperationStateException("UserOperation is already signed")
        if self.require_sponsorship and not user_operation.is_sponsored:
            raise OperationStateException(
                "UserOperation must be sponsored before signing")
        if self.owner is None:
            raise SigningFailed("Owner private key is not available")

        user_operation_hash = (
            await self.user_operation_hasher.get_user_operation_hash(
                user_operation)
        )
        logging.debug(f"UserOperation hash to sign: {user_operation_hash}")

        signature = sign_user_operation_hash(user_operation_hash, self.owner)
        user_operation.apply_signature(signature)
        logging.info("UserOperation signature: 0x" + signature.hex())
        return user_operation


def sign_user_operation_hash(
    user_operation_hash: str, owner: LocalAccount
) -> bytes:
    # EIP-191 personal message over the raw 32 bytes hash
    message = encode_defunct(primitive=to_bytes(hexstr=user_operation_hash))
    try:
        signed_message = Account.sign_message(message, private_key=owner.key)
    except (ValueError, TypeError) as excp:
        raise SigningFailed(f"Signing failed: {str(excp)}") from excp
    return bytes(signed_message.signature)
