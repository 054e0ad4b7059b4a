import asyncio
import logging
from typing import Any

from sponsored_userop.exceptions import (
    BundlerUnavailable, ConfigurationException, OperationStateException,
    ReceiptMalformed, ReceiptTimeout, RpcTransportException,
    SubmissionRejected)
from sponsored_userop.typing import Address, TransactionHash, UserOperationHash
from sponsored_userop.user_operation.user_operation import (
    UserOperation, is_user_operation_hash)
from sponsored_userop.utils.eth_client_utils import (
    RpcClient, get_rpc_error_code, get_rpc_error_message)

DEFAULT_RECEIPT_POLL_INTERVAL = 1
DEFAULT_RECEIPT_TIMEOUT = 120


class SubmissionClient:
    bundler_rpc: RpcClient
    entrypoint: Address

    def __init__(self, bundler_rpc: RpcClient, entrypoint: Address):
        self.bundler_rpc = bundler_rpc
        self.entrypoint = entrypoint

    async def send_user_operation(
        self, user_operation: UserOperation
    ) -> UserOperationHash:
        if not user_operation.is_signed:
            raise OperationStateException(
                "Only a signed UserOperation can be submitted")

        logging.info("Submitting UserOperation to the bundler...")
        try:
            result = await self.bundler_rpc.send(
                "eth_sendUserOperation",
                [user_operation.get_user_operation_json(), self.entrypoint],
            )
        except RpcTransportException as excp:
            raise BundlerUnavailable(excp.message) from excp

        if "error" in result:
            raise SubmissionRejected(
                get_rpc_error_code(result),
                get_rpc_error_message(result),
                result,
            )
        user_operation_hash = result.get("result")
        if not is_user_operation_hash(user_operation_hash):
            raise SubmissionRejected(
                None,
                f"Bundler returned an invalid userOp hash {user_operation_hash}",
                result,
            )
        logging.info(f"UserOperation hash: {user_operation_hash}")
        return UserOperationHash(user_operation_hash)

    async def get_user_operation_receipt(
        self, user_operation_hash: UserOperationHash
    ) -> dict[str, Any] | None:
        try:
            result = await self.bundler_rpc.send(
                "eth_getUserOperationReceipt", [user_operation_hash])
        except RpcTransportException as excp:
            raise BundlerUnavailable(excp.message) from excp

        if "error" in result:
            raise BundlerUnavailable(
                "eth_getUserOperationReceipt failed: " +
                get_rpc_error_message(result),
                result,
            )
        receipt = result.get("result")
        if receipt is not None and not isinstance(receipt, dict):
            raise ReceiptMalformed(
                "Bundler returned an invalid receipt payload", result)
        return receipt

    async def wait_for_receipt(
        self,
        user_operation_hash: UserOperationHash,
        poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
        timeout: float | None = DEFAULT_RECEIPT_TIMEOUT,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        """
        Poll eth_getUserOperationReceipt until a receipt is returned.

        Sleeps poll_interval before every lookup. Raises ReceiptTimeout
        once timeout seconds elapsed or max_attempts lookups returned
        nothing. A lookup still in flight at the deadline is abandoned.
        At least one of timeout and max_attempts must be set. Cancelling
        the awaiting task stops the polling.
        """
        if timeout is None and max_attempts is None:
            raise ConfigurationException(
                "Receipt polling needs a timeout or a maximum of attempts")

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        attempts = 0

        logging.info("Querying for receipts...")
        while True:
            if max_attempts is not None and attempts >= max_attempts:
                raise ReceiptTimeout(user_operation_hash, attempts)
            if deadline is not None and loop.time() + poll_interval > deadline:
                raise ReceiptTimeout(user_operation_hash, attempts)

            await asyncio.sleep(poll_interval)
            attempts += 1
            remaining = None if deadline is None \
                else max(deadline - loop.time(), 0)
            try:
                receipt = await asyncio.wait_for(
                    self.get_user_operation_receipt(user_operation_hash),
                    remaining,
                )
            except asyncio.TimeoutError:
                logging.warning(
                    f"Receipt lookup No. {attempts} outlived the deadline")
                raise ReceiptTimeout(user_operation_hash, attempts)
            except BundlerUnavailable as excp:
                logging.warning(
                    f"Receipt lookup No. {attempts} failed: {excp.message}")
                continue

            if receipt is not None:
                logging.debug(f"UserOperation receipt: {str(receipt)}")
                return receipt
            logging.info("Still waiting...")


def get_transaction_hash(receipt: dict[str, Any]) -> TransactionHash:
    transaction_receipt = receipt.get("receipt")
    if (
        not isinstance(transaction_receipt, dict) or
        not isinstance(transaction_receipt.get("transactionHash"), str)
    ):
        raise ReceiptMalformed(
            "UserOperation receipt is missing receipt.transactionHash",
            receipt,
        )
    return TransactionHash(transaction_receipt["transactionHash"])
