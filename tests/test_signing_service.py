from dataclasses import replace

import pytest
from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import to_bytes

from conftest import CHAIN_ID, FakeRpcClient
from sponsored_userop.exceptions import (
    EthClientException, OperationStateException, SigningFailed)
from sponsored_userop.signing.signing_service import (
    EntryPointUserOperationHasher, LocalUserOperationHasher, SigningService,
    sign_user_operation_hash)
from sponsored_userop.utils.encode import GET_USER_OP_HASH_SELECTOR


def recover_signer(user_operation_hash, signature):
    return Account.recover_message(
        encode_defunct(primitive=to_bytes(hexstr=user_operation_hash)),
        signature=signature,
    )


@pytest.mark.asyncio
async def test_user_operation_hash_binds_every_field(
    sponsored_user_operation, entrypoint
):
    """
    Test changing any hashed field, the entrypoint or the chain id
    changes the hash
    """
    hasher = LocalUserOperationHasher(entrypoint, CHAIN_ID)
    user_operation_hash = await hasher.get_user_operation_hash(
        sponsored_user_operation)

    variants = [
        {"sender_address": "0x0000000000000000000000000000000000000001"},
        {"nonce": 1},
        {"init_code": b"\x01"},
        {"call_data": b"\x01"},
        {"call_gas_limit": 1},
        {"verification_gas_limit": 1},
        {"pre_verification_gas": 1},
        {"max_fee_per_gas": 1},
        {"max_priority_fee_per_gas": 1},
        {"paymaster_and_data": b"\x01"},
    ]
    hashes = {user_operation_hash}
    for changes in variants:
        hashes.add(await hasher.get_user_operation_hash(
            replace(sponsored_user_operation, **changes)))
    hashes.add(
        await LocalUserOperationHasher(entrypoint, CHAIN_ID + 1)
        .get_user_operation_hash(sponsored_user_operation))
    hashes.add(
        await LocalUserOperationHasher(
            "0x0000000000000000000000000000000000000002", CHAIN_ID
        ).get_user_operation_hash(sponsored_user_operation))

    assert len(hashes) == len(variants) + 3


@pytest.mark.asyncio
async def test_sign_user_operation(sponsored_user_operation, owner, entrypoint):
    """
    Test the signature recovers to the owner over the userOp hash
    """
    hasher = LocalUserOperationHasher(entrypoint, CHAIN_ID)
    user_operation_hash = await hasher.get_user_operation_hash(
        sponsored_user_operation)

    await SigningService(owner, hasher).sign_user_operation(
        sponsored_user_operation)

    assert sponsored_user_operation.is_signed
    assert len(sponsored_user_operation.signature) == 65
    assert recover_signer(
        user_operation_hash, sponsored_user_operation.signature
    ) == owner.address
    # the signature is not part of the hash
    assert await hasher.get_user_operation_hash(
        sponsored_user_operation) == user_operation_hash


@pytest.mark.asyncio
async def test_sign_unsponsored_user_operation(
    user_operation, owner, entrypoint
):
    signing_service = SigningService(
        owner, LocalUserOperationHasher(entrypoint, CHAIN_ID))

    with pytest.raises(OperationStateException):
        await signing_service.sign_user_operation(user_operation)
    assert not user_operation.is_signed


@pytest.mark.asyncio
async def test_sign_unsponsored_user_operation_allowed(
    user_operation, owner, entrypoint
):
    signing_service = SigningService(
        owner,
        LocalUserOperationHasher(entrypoint, CHAIN_ID),
        require_sponsorship=False,
    )

    await signing_service.sign_user_operation(user_operation)
    assert user_operation.is_signed


@pytest.mark.asyncio
async def test_sign_twice(sponsored_user_operation, owner, entrypoint):
    signing_service = SigningService(
        owner, LocalUserOperationHasher(entrypoint, CHAIN_ID))
    await signing_service.sign_user_operation(sponsored_user_operation)
    signature = sponsored_user_operation.signature

    with pytest.raises(OperationStateException):
        await signing_service.sign_user_operation(sponsored_user_operation)
    with pytest.raises(OperationStateException):
        sponsored_user_operation.call_gas_limit = 1
    assert sponsored_user_operation.signature == signature


@pytest.mark.asyncio
async def test_sign_without_owner(sponsored_user_operation, entrypoint):
    signing_service = SigningService(
        None, LocalUserOperationHasher(entrypoint, CHAIN_ID))

    with pytest.raises(SigningFailed):
        await signing_service.sign_user_operation(sponsored_user_operation)


def test_sign_user_operation_hash(owner):
    user_operation_hash = "0x" + "ab" * 32

    first = sign_user_operation_hash(user_operation_hash, owner)
    second = sign_user_operation_hash(user_operation_hash, owner)

    assert recover_signer(user_operation_hash, first) == owner.address
    assert recover_signer(user_operation_hash, second) == owner.address


@pytest.mark.asyncio
async def test_entrypoint_user_operation_hasher(
    sponsored_user_operation, entrypoint
):
    """
    Test getUserOpHash from the entrypoint matches the local hash
    """
    local_hash = await LocalUserOperationHasher(
        entrypoint, CHAIN_ID).get_user_operation_hash(sponsored_user_operation)
    chain_rpc = FakeRpcClient({
        "eth_call": {
            "result": "0x" + encode(
                ["bytes32"], [to_bytes(hexstr=local_hash)]).hex()
        }
    })

    onchain_hash = await EntryPointUserOperationHasher(
        chain_rpc, entrypoint).get_user_operation_hash(sponsored_user_operation)

    assert onchain_hash == local_hash
    method, params = chain_rpc.calls[0]
    assert params[0]["to"] == entrypoint
    assert params[0]["data"].startswith(
        "0x" + GET_USER_OP_HASH_SELECTOR.hex())


@pytest.mark.asyncio
async def test_entrypoint_user_operation_hasher_error(
    sponsored_user_operation, entrypoint
):
    chain_rpc = FakeRpcClient(
        {"eth_call": {"error": {"code": 3, "message": "execution reverted"}}})

    with pytest.raises(EthClientException):
        await EntryPointUserOperationHasher(
            chain_rpc, entrypoint
        ).get_user_operation_hash(sponsored_user_operation)
