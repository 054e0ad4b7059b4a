import asyncio
import logging
import sys
from signal import SIGTERM

import uvloop

from sponsored_userop.address.address_deriver import AddressDeriver
from sponsored_userop.bundler.submission_client import SubmissionClient
from sponsored_userop.exceptions import (
    AddressDerivationFailed, BundlerUnavailable, ConfigurationException,
    EthClientException, OperationStateException, ProtocolViolation,
    ReceiptMalformed, ReceiptTimeout, RpcTransportException, SigningFailed,
    SponsorshipResponseInvalid, SponsorshipUnavailable, SubmissionRejected,
    ValidationException)
from sponsored_userop.gas.gas_manager import \
    FeeManager, FixedGasEstimationPolicy
from sponsored_userop.metrics.metrics import run_metrics_server
from sponsored_userop.paymaster.sponsorship_client import SponsorshipClient
from sponsored_userop.pipeline import UserOperationPipeline
from sponsored_userop.signing.signing_service import (
    EntryPointUserOperationHasher, LocalUserOperationHasher, SigningService,
    UserOperationHasher)
from sponsored_userop.user_operation.models import PipelineResult
from sponsored_userop.utils.eth_client_utils import RpcClient

from .cli_manager import InitData, parse_args

CHAIN_RPC_NUMBER_OF_RETRY_ATTEMPTS = 3


def create_pipeline(init_data: InitData) -> UserOperationPipeline:
    chain_rpc = RpcClient(
        init_data.chain_rpc_url,
        number_of_retry_attempts=CHAIN_RPC_NUMBER_OF_RETRY_ATTEMPTS,
    )
    # paymaster and bundler calls are never retried automatically
    paymaster_rpc = RpcClient(init_data.paymaster_url)
    bundler_rpc = RpcClient(init_data.bundler_url)

    fee_manager = FeeManager(
        chain_rpc,
        init_data.is_legacy_mode,
        init_data.max_fee_per_gas_percentage_multiplier,
        init_data.max_priority_fee_per_gas_percentage_multiplier,
    )

    user_operation_hasher: UserOperationHasher
    if init_data.is_onchain_user_operation_hash:
        user_operation_hasher = EntryPointUserOperationHasher(
            chain_rpc, init_data.entrypoint)
    else:
        user_operation_hasher = LocalUserOperationHasher(
            init_data.entrypoint, init_data.chain_id)

    return UserOperationPipeline(
        chain_rpc,
        init_data.entrypoint,
        init_data.factory,
        AddressDeriver(chain_rpc, init_data.entrypoint),
        FixedGasEstimationPolicy(
            fee_manager,
            init_data.call_gas_limit,
            init_data.verification_gas_limit,
            init_data.pre_verification_gas,
        ),
        SponsorshipClient(paymaster_rpc, init_data.entrypoint),
        SigningService(init_data.owner, user_operation_hasher),
        SubmissionClient(bundler_rpc, init_data.entrypoint),
        init_data.receipt_poll_interval,
        init_data.receipt_timeout,
        init_data.receipt_max_attempts,
    )


async def execute(init_data: InitData) -> PipelineResult:
    pipeline = create_pipeline(init_data)
    result = await pipeline.run(
        init_data.owner.address,
        init_data.to,
        init_data.value,
        init_data.data,
        init_data.salt,
    )
    if init_data.explorer_url is not None:
        logging.info(
            "UserOperation included: "
            f"{init_data.explorer_url.rstrip('/')}/tx/{result.transaction_hash}"
        )
    return result


async def main(cmd_args=sys.argv[1:]) -> None:
    init_data = await parse_args(cmd_args)

    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    if main_task is not None:
        loop.add_signal_handler(SIGTERM, main_task.cancel)

    if init_data.is_metrics:
        run_metrics_server(port=init_data.metrics_port)

    try:
        await execute(init_data)
    except (
        ValidationException,
        OperationStateException,
        ProtocolViolation,
        AddressDerivationFailed,
        ConfigurationException,
        SigningFailed,
        EthClientException,
        RpcTransportException,
    ) as excp:
        logging.critical(f"UserOperation pipeline aborted: {repr(excp)}")
        sys.exit(1)
    except (
        SponsorshipUnavailable,
        SponsorshipResponseInvalid,
        SubmissionRejected,
        BundlerUnavailable,
    ) as excp:
        logging.critical(f"UserOperation was not accepted: {excp.message}")
        logging.debug(f"raw response: {str(excp.raw_response)}")
        sys.exit(1)
    except (ReceiptTimeout, ReceiptMalformed) as excp:
        logging.critical(f"UserOperation receipt unavailable: {repr(excp)}")
        sys.exit(1)


def run() -> None:
    uvloop.run(main())


if __name__ == "__main__":
    run()
