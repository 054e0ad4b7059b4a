import asyncio
import inspect

import pytest

from conftest import FakeRpcClient
from sponsored_userop.bundler.submission_client import (
    DEFAULT_RECEIPT_TIMEOUT, SubmissionClient, get_transaction_hash)
from sponsored_userop.exceptions import (
    BundlerUnavailable, ConfigurationException, OperationStateException,
    ReceiptMalformed, ReceiptTimeout, RpcTransportException,
    SubmissionRejected)

USER_OPERATION_HASH = "0xabc" + "0" * 61
TRANSACTION_HASH = "0x" + "12" * 32


def receipt():
    return {
        "userOpHash": USER_OPERATION_HASH,
        "success": True,
        "receipt": {"transactionHash": TRANSACTION_HASH},
    }


@pytest.fixture
def signed_user_operation(sponsored_user_operation):
    sponsored_user_operation.apply_signature(b"\x01" * 65)
    return sponsored_user_operation


@pytest.mark.asyncio
async def test_send_user_operation(signed_user_operation, entrypoint):
    bundler_rpc = FakeRpcClient(
        {"eth_sendUserOperation": {"result": USER_OPERATION_HASH}})

    user_operation_hash = await SubmissionClient(
        bundler_rpc, entrypoint).send_user_operation(signed_user_operation)

    assert user_operation_hash == USER_OPERATION_HASH
    method, params = bundler_rpc.calls[0]
    assert params == [
        signed_user_operation.get_user_operation_json(), entrypoint]


@pytest.mark.asyncio
async def test_send_unsigned_user_operation(
    sponsored_user_operation, entrypoint
):
    bundler_rpc = FakeRpcClient(
        {"eth_sendUserOperation": {"result": USER_OPERATION_HASH}})

    with pytest.raises(OperationStateException):
        await SubmissionClient(bundler_rpc, entrypoint).send_user_operation(
            sponsored_user_operation)
    assert bundler_rpc.calls == []


@pytest.mark.asyncio
async def test_send_user_operation_rejected(signed_user_operation, entrypoint):
    """
    Test a bundler error keeps its code and message
    """
    response = {"error": {"code": -32500, "message": "AA21 didn't pay prefund"}}
    bundler_rpc = FakeRpcClient({"eth_sendUserOperation": response})

    with pytest.raises(SubmissionRejected) as excinfo:
        await SubmissionClient(bundler_rpc, entrypoint).send_user_operation(
            signed_user_operation)

    assert excinfo.value.code == -32500
    assert excinfo.value.message == "AA21 didn't pay prefund"
    assert excinfo.value.raw_response == response


@pytest.mark.asyncio
async def test_send_user_operation_invalid_hash(
    signed_user_operation, entrypoint
):
    bundler_rpc = FakeRpcClient({"eth_sendUserOperation": {"result": "0x12"}})

    with pytest.raises(SubmissionRejected) as excinfo:
        await SubmissionClient(bundler_rpc, entrypoint).send_user_operation(
            signed_user_operation)
    assert excinfo.value.code is None


@pytest.mark.asyncio
async def test_send_user_operation_transport_failure(
    signed_user_operation, entrypoint
):
    bundler_rpc = FakeRpcClient({
        "eth_sendUserOperation":
            RpcTransportException("eth_sendUserOperation", "refused")
    })

    with pytest.raises(BundlerUnavailable):
        await SubmissionClient(bundler_rpc, entrypoint).send_user_operation(
            signed_user_operation)


@pytest.mark.asyncio
@pytest.mark.parametrize("pending_lookups", [0, 1, 4])
async def test_wait_for_receipt(pending_lookups, entrypoint):
    """
    Test N empty lookups are followed by exactly one more returning the receipt
    """
    expected = receipt()
    bundler_rpc = FakeRpcClient({
        "eth_getUserOperationReceipt":
            [{"result": None}] * pending_lookups + [{"result": expected}]
    })

    result = await SubmissionClient(bundler_rpc, entrypoint).wait_for_receipt(
        USER_OPERATION_HASH, poll_interval=0)

    assert result is expected
    assert bundler_rpc.count("eth_getUserOperationReceipt") == \
        pending_lookups + 1
    assert bundler_rpc.calls[0][1] == [USER_OPERATION_HASH]


@pytest.mark.asyncio
async def test_wait_for_receipt_max_attempts(entrypoint):
    bundler_rpc = FakeRpcClient(
        {"eth_getUserOperationReceipt": {"result": None}})

    with pytest.raises(ReceiptTimeout) as excinfo:
        await SubmissionClient(bundler_rpc, entrypoint).wait_for_receipt(
            USER_OPERATION_HASH, poll_interval=0, max_attempts=3)

    assert excinfo.value.attempts == 3
    assert excinfo.value.user_operation_hash == USER_OPERATION_HASH
    assert bundler_rpc.count("eth_getUserOperationReceipt") == 3


@pytest.mark.asyncio
async def test_wait_for_receipt_timeout(entrypoint):
    bundler_rpc = FakeRpcClient(
        {"eth_getUserOperationReceipt": {"result": None}})

    with pytest.raises(ReceiptTimeout):
        await SubmissionClient(bundler_rpc, entrypoint).wait_for_receipt(
            USER_OPERATION_HASH, poll_interval=0.01, timeout=0.05)


@pytest.mark.asyncio
async def test_wait_for_receipt_survives_lookup_failure(entrypoint):
    """
    Test a failed lookup is logged and polling goes on
    """
    expected = receipt()
    bundler_rpc = FakeRpcClient({
        "eth_getUserOperationReceipt": [
            RpcTransportException("eth_getUserOperationReceipt", "refused"),
            {"error": {"code": -32000, "message": "busy"}},
            {"result": expected},
        ]
    })

    result = await SubmissionClient(bundler_rpc, entrypoint).wait_for_receipt(
        USER_OPERATION_HASH, poll_interval=0)

    assert result is expected
    assert bundler_rpc.count("eth_getUserOperationReceipt") == 3


@pytest.mark.asyncio
async def test_wait_for_receipt_malformed(entrypoint):
    bundler_rpc = FakeRpcClient(
        {"eth_getUserOperationReceipt": {"result": "0x1234"}})

    with pytest.raises(ReceiptMalformed):
        await SubmissionClient(bundler_rpc, entrypoint).wait_for_receipt(
            USER_OPERATION_HASH, poll_interval=0)


@pytest.mark.asyncio
async def test_wait_for_receipt_cancelled(entrypoint):
    bundler_rpc = FakeRpcClient(
        {"eth_getUserOperationReceipt": {"result": None}})
    task = asyncio.ensure_future(
        SubmissionClient(bundler_rpc, entrypoint).wait_for_receipt(
            USER_OPERATION_HASH, poll_interval=10))
    await asyncio.sleep(0)

    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert bundler_rpc.calls == []


def test_get_transaction_hash():
    assert get_transaction_hash(receipt()) == TRANSACTION_HASH
    with pytest.raises(ReceiptMalformed):
        get_transaction_hash({"success": True})
    with pytest.raises(ReceiptMalformed):
        get_transaction_hash({"receipt": {}})


def test_wait_for_receipt_is_bounded_by_default():
    parameters = inspect.signature(SubmissionClient.wait_for_receipt).parameters
    assert parameters["timeout"].default == DEFAULT_RECEIPT_TIMEOUT
    assert DEFAULT_RECEIPT_TIMEOUT > 0


@pytest.mark.asyncio
async def test_wait_for_receipt_unbounded(entrypoint):
    bundler_rpc = FakeRpcClient(
        {"eth_getUserOperationReceipt": {"result": None}})

    with pytest.raises(ConfigurationException):
        await SubmissionClient(bundler_rpc, entrypoint).wait_for_receipt(
            USER_OPERATION_HASH, poll_interval=0,
            timeout=None, max_attempts=None)
    assert bundler_rpc.calls == []


@pytest.mark.asyncio
async def test_wait_for_receipt_bundler_always_failing(entrypoint):
    """
    Test a bundler that never answers ends in ReceiptTimeout
    """
    bundler_rpc = FakeRpcClient({
        "eth_getUserOperationReceipt": RpcTransportException(
            "eth_getUserOperationReceipt", "connection refused")
    })

    with pytest.raises(ReceiptTimeout):
        await asyncio.wait_for(
            SubmissionClient(bundler_rpc, entrypoint).wait_for_receipt(
                USER_OPERATION_HASH, poll_interval=0.001, timeout=0.05),
            timeout=5)
    assert bundler_rpc.count("eth_getUserOperationReceipt") >= 1


class SlowRpcClient:
    nodes_urls = ["http://slow/rpc"]

    def __init__(self):
        self.calls = 0

    async def send(self, method, params=None):
        self.calls += 1
        await asyncio.sleep(10)
        return {"result": None}


@pytest.mark.asyncio
async def test_wait_for_receipt_abandons_lookup_at_deadline(entrypoint):
    """
    Test a lookup still running at the deadline doesn't extend the wait
    """
    bundler_rpc = SlowRpcClient()
    loop = asyncio.get_running_loop()
    started = loop.time()

    with pytest.raises(ReceiptTimeout) as excinfo:
        await SubmissionClient(bundler_rpc, entrypoint).wait_for_receipt(
            USER_OPERATION_HASH, poll_interval=0, timeout=0.05)

    assert loop.time() - started < 1
    assert bundler_rpc.calls == 1
    assert excinfo.value.user_operation_hash == USER_OPERATION_HASH
