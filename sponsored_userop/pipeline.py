import logging

from sponsored_userop.address.address_deriver import AddressDeriver
from sponsored_userop.bundler.submission_client import (
    DEFAULT_RECEIPT_POLL_INTERVAL, DEFAULT_RECEIPT_TIMEOUT, SubmissionClient,
    get_transaction_hash)
from sponsored_userop.entrypoint import get_nonce, is_deployed
from sponsored_userop.gas.gas_manager import GasEstimationPolicy
from sponsored_userop.metrics.metrics import (
    STAGE_TIME_derive_sender_address, STAGE_TIME_estimate_gas,
    STAGE_TIME_send_user_operation, STAGE_TIME_sign_user_operation,
    STAGE_TIME_sponsor_user_operation, STAGE_TIME_wait_for_receipt)
from sponsored_userop.paymaster.sponsorship_client import SponsorshipClient
from sponsored_userop.signing.signing_service import SigningService
from sponsored_userop.typing import Address
from sponsored_userop.user_operation.builder import (
    build_execute_call_data, build_init_code, build_user_operation)
from sponsored_userop.user_operation.models import \
    PipelineResult, UserOperationDraft
from sponsored_userop.user_operation.user_operation import UserOperation
from sponsored_userop.utils.eth_client_utils import RpcClient


class UserOperationPipeline:
    """
    Derive -> build -> sponsor -> sign -> submit, in that order.

    Collaborators are shared read-only; each run owns its UserOperation.
    """

    chain_rpc: RpcClient
    entrypoint: Address
    factory: Address
    address_deriver: AddressDeriver
    gas_estimation_policy: GasEstimationPolicy
    sponsorship_client: SponsorshipClient
    signing_service: SigningService
    submission_client: SubmissionClient
    receipt_poll_interval: float
    receipt_timeout: float | None
    receipt_max_attempts: int | None

    def __init__(
        self,
        chain_rpc: RpcClient,
        entrypoint: Address,
        factory: Address,
        address_deriver: AddressDeriver,
        gas_estimation_policy: GasEstimationPolicy,
        sponsorship_client: SponsorshipClient,
        signing_service: SigningService,
        submission_client: SubmissionClient,
        receipt_poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL,
        receipt_timeout: float | None = DEFAULT_RECEIPT_TIMEOUT,
        receipt_max_attempts: int | None = None,
    ):
        self.chain_rpc = chain_rpc
        self.entrypoint = entrypoint
        self.factory = factory
        self.address_deriver = address_deriver
        self.gas_estimation_policy = gas_estimation_policy
        self.sponsorship_client = sponsorship_client
        self.signing_service = signing_service
        self.submission_client = submission_client
        self.receipt_poll_interval = receipt_poll_interval
        self.receipt_timeout = receipt_timeout
        self.receipt_max_attempts = receipt_max_attempts

    async def build(
        self,
        owner: Address,
        to: Address,
        value: int,
        data: bytes | str,
        salt: int = 0,
    ) -> UserOperation:
        init_code = build_init_code(self.factory, owner, salt)
        logging.info("Generated Init Code: 0x" + init_code.hex())

        with STAGE_TIME_derive_sender_address.time():
            sender = await self.address_deriver.derive_sender_address(
                init_code)

        nonce = 0
        if await is_deployed(self.chain_rpc, sender):
            logging.info(f"Sender {sender} is already deployed")
            init_code = b""
            nonce = await get_nonce(self.chain_rpc, self.entrypoint, sender)

        call_data = build_execute_call_data(to, value, data)
        logging.info("Generated CallData: 0x" + call_data.hex())

        logging.info("Fetching gas fees...")

        with STAGE_TIME_estimate_gas.time():
            gas_parameters = await self.gas_estimation_policy.estimate(
                UserOperationDraft(sender, nonce, init_code, call_data)
            )

        return build_user_operation(
            sender, nonce, init_code, call_data, gas_parameters)

    async def run(
        self,
        owner: Address,
        to: Address,
        value: int,
        data: bytes | str,
        salt: int = 0,
    ) -> PipelineResult:
        user_operation = await self.build(owner, to, value, data, salt)

        with STAGE_TIME_sponsor_user_operation.time():
            await self.sponsorship_client.sponsor_user_operation(
                user_operation)

        logging.info("Signing UserOperation...")
        with STAGE_TIME_sign_user_operation.time():
            await self.signing_service.sign_user_operation(user_operation)

        with STAGE_TIME_send_user_operation.time():
            user_operation_hash = (
                await self.submission_client.send_user_operation(
                    user_operation)
            )

        with STAGE_TIME_wait_for_receipt.time():
            receipt = await self.submission_client.wait_for_receipt(
                user_operation_hash,
                self.receipt_poll_interval,
                self.receipt_timeout,
                self.receipt_max_attempts,
            )

        transaction_hash = get_transaction_hash(receipt)
        logging.info(f"UserOperation included in transaction {transaction_hash}")
        return PipelineResult(
            user_operation,
            user_operation_hash,
            receipt,
            transaction_hash,
        )
