import logging
import os
import re
import sys
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version

from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from sponsored_userop.bundler.submission_client import \
    DEFAULT_RECEIPT_POLL_INTERVAL, DEFAULT_RECEIPT_TIMEOUT
from sponsored_userop.entrypoint import DEFAULT_ENTRYPOINT_V6, is_deployed
from sponsored_userop.exceptions import (
    ConfigurationException, EthClientException, RpcTransportException)
from sponsored_userop.gas.gas_manager import (
    DEFAULT_CALL_GAS_LIMIT, DEFAULT_PRE_VERIFICATION_GAS,
    DEFAULT_VERIFICATION_GAS_LIMIT)
from sponsored_userop.paymaster.sponsorship_client import get_paymaster_url
from sponsored_userop.typing import Address
from sponsored_userop.utils.eth_client_utils import RpcClient
from sponsored_userop.utils.import_key import (
    create_random_owner_account, import_owner_account,
    owner_account_from_private_key)

try:
    __version__ = version("sponsored_userop")
except PackageNotFoundError:
    __version__ = "0.0.0"

DEFAULT_SIMPLE_ACCOUNT_FACTORY = Address(
    "0x9406Cc6185a346906296840746125a0E44976454")
DEFAULT_PAYMASTER_BASE_URL = "https://api.pimlico.io/v1"

REQUIRED_OPTIONS = {
    "chain_rpc_url": "--chain_rpc_url or USEROP_CHAIN_RPC_URL",
    "chain_id": "--chain_id or USEROP_CHAIN_ID",
    "paymaster_chain": "--paymaster_chain or USEROP_PAYMASTER_CHAIN",
    "paymaster_api_key": "--paymaster_api_key or PIMLICO_API_KEY",
    "to": "--to",
}


@dataclass()
class InitData:
    chain_rpc_url: str
    chain_id: int
    entrypoint: Address
    factory: Address
    paymaster_url: str
    bundler_url: str
    owner: LocalAccount
    to: Address
    value: int
    data: str
    salt: int
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    is_legacy_mode: bool
    max_fee_per_gas_percentage_multiplier: int
    max_priority_fee_per_gas_percentage_multiplier: int
    is_onchain_user_operation_hash: bool
    receipt_poll_interval: float
    receipt_timeout: float | None
    receipt_max_attempts: int | None
    explorer_url: str | None
    is_metrics: bool
    metrics_port: int
    client_version: str


def address(ep: str):
    address_pattern = "^0x[0-9a-fA-F]{40}$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return Address(to_checksum_address(ep))


def unsigned_int(value):
    ivalue = int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def positive_int(value):
    ivalue = int(value)
    if ivalue <= 0:
        raise ArgumentTypeError(
                "%s is an invalid positive int value" % value)
    return ivalue


def positive_float(value):
    fvalue = float(value)
    if fvalue <= 0:
        raise ArgumentTypeError(
                "%s is an invalid positive value" % value)
    return fvalue


def hex_bytes(value: str):
    if (
        not isinstance(value, str) or
        re.match("^0x([0-9a-fA-F]{2})*$", value) is None
    ):
        raise ArgumentTypeError(f"Wrong hex bytes format : {value}")
    return value


def boolean(value):
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes")


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return the default value.
    """
    value = os.getenv(env_var, None)
    if value is not None:
        return value_type(value)
    return default


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="sponsored-userop",
        description=(
            "Build, sponsor, sign and submit an ERC-4337 UserOperation "
            "for a counterfactual SimpleAccount"
        ),
    )

    parser.add_argument(
        "--chain_rpc_url",
        type=str,
        help="Chain node http url",
        nargs="?",
        default=_get_env_or_default("USEROP_CHAIN_RPC_URL", None, str),
    )

    parser.add_argument(
        "--chain_id",
        type=unsigned_int,
        help="chain id - must match the chain node",
        nargs="?",
        default=_get_env_or_default("USEROP_CHAIN_ID", None, unsigned_int),
    )

    parser.add_argument(
        "--entrypoint",
        type=address,
        help="EntryPoint v0.6 address",
        nargs="?",
        default=_get_env_or_default(
            "USEROP_ENTRYPOINT", DEFAULT_ENTRYPOINT_V6, address),
    )

    parser.add_argument(
        "--factory",
        type=address,
        help="SimpleAccountFactory address",
        nargs="?",
        default=_get_env_or_default(
            "USEROP_FACTORY", DEFAULT_SIMPLE_ACCOUNT_FACTORY, address),
    )

    parser.add_argument(
        "--paymaster_base_url",
        type=str,
        help=f"Paymaster base url - defaults to {DEFAULT_PAYMASTER_BASE_URL}",
        nargs="?",
        default=_get_env_or_default(
            "USEROP_PAYMASTER_BASE_URL", DEFAULT_PAYMASTER_BASE_URL, str),
    )

    parser.add_argument(
        "--paymaster_chain",
        type=str,
        help="Paymaster chain name, for example linea-testnet",
        nargs="?",
        default=_get_env_or_default("USEROP_PAYMASTER_CHAIN", None, str),
    )

    parser.add_argument(
        "--paymaster_api_key",
        type=str,
        help="Paymaster api key",
        nargs="?",
        default=_get_env_or_default("PIMLICO_API_KEY", None, str),
    )

    parser.add_argument(
        "--bundler_url",
        type=str,
        help="Bundler http url - defaults to the paymaster endpoint",
        nargs="?",
        default=_get_env_or_default("USEROP_BUNDLER_URL", None, str),
    )

    group = parser.add_mutually_exclusive_group(required=False)

    group.add_argument(
        "--owner_secret",
        type=str,
        help="Account owner private key - defaults to a random owner",
        nargs="?",
        default=_get_env_or_default("USEROP_OWNER_SECRET", None, str),
    )

    group.add_argument(
        "--keystore_file_path",
        type=str,
        help="Account owner Keystore file path",
        nargs="?",
        default=_get_env_or_default("USEROP_KEYSTORE_FILE_PATH", None, str),
    )

    parser.add_argument(
        "--keystore_file_password",
        type=str,
        help="Account owner Keystore file password - defaults to no password",
        nargs="?",
        const="",
        default=_get_env_or_default(
            "USEROP_KEYSTORE_FILE_PASSWORD", "", str),
    )

    parser.add_argument(
        "--to",
        type=address,
        help="target of the account execute call",
        nargs="?",
    )

    parser.add_argument(
        "--value",
        type=unsigned_int,
        help="wei value of the account execute call - defaults to 0",
        nargs="?",
        const=0,
        default=0,
    )

    parser.add_argument(
        "--data",
        type=hex_bytes,
        help="hex data of the account execute call - defaults to 0x",
        nargs="?",
        const="0x",
        default="0x",
    )

    parser.add_argument(
        "--salt",
        type=unsigned_int,
        help="SimpleAccountFactory createAccount salt - defaults to 0",
        nargs="?",
        const=0,
        default=0,
    )

    parser.add_argument(
        "--call_gas_limit",
        type=unsigned_int,
        help=f"callGasLimit - defaults to {DEFAULT_CALL_GAS_LIMIT}",
        nargs="?",
        const=DEFAULT_CALL_GAS_LIMIT,
        default=DEFAULT_CALL_GAS_LIMIT,
    )

    parser.add_argument(
        "--verification_gas_limit",
        type=unsigned_int,
        help=(
            "verificationGasLimit - defaults to "
            f"{DEFAULT_VERIFICATION_GAS_LIMIT}"
        ),
        nargs="?",
        const=DEFAULT_VERIFICATION_GAS_LIMIT,
        default=DEFAULT_VERIFICATION_GAS_LIMIT,
    )

    parser.add_argument(
        "--pre_verification_gas",
        type=unsigned_int,
        help=(
            "preVerificationGas - defaults to "
            f"{DEFAULT_PRE_VERIFICATION_GAS}"
        ),
        nargs="?",
        const=DEFAULT_PRE_VERIFICATION_GAS,
        default=DEFAULT_PRE_VERIFICATION_GAS,
    )

    parser.add_argument(
        "--legacy_mode",
        help="use eth_gasPrice for both maxFeePerGas and maxPriorityFeePerGas",
        nargs="?",
        const=True,
        default=_get_env_or_default("USEROP_LEGACY_MODE", False, boolean),
    )

    parser.add_argument(
        "--max_fee_per_gas_percentage_multiplier",
        type=unsigned_int,
        help="modify the eth_gasPrice by a percentage - defaults to 100",
        nargs="?",
        const=100,
        default=100,
    )

    parser.add_argument(
        "--max_priority_fee_per_gas_percentage_multiplier",
        type=unsigned_int,
        help=(
            "modify the eth_maxPriorityFeePerGas by a percentage - "
            "defaults to 100"
        ),
        nargs="?",
        const=100,
        default=100,
    )

    parser.add_argument(
        "--onchain_user_operation_hash",
        help="ask the EntryPoint for getUserOpHash instead of computing it",
        nargs="?",
        const=True,
        default=False,
    )

    parser.add_argument(
        "--receipt_poll_interval",
        type=positive_float,
        help=(
            "seconds between receipt lookups - defaults to "
            f"{DEFAULT_RECEIPT_POLL_INTERVAL}"
        ),
        nargs="?",
        const=DEFAULT_RECEIPT_POLL_INTERVAL,
        default=DEFAULT_RECEIPT_POLL_INTERVAL,
    )

    parser.add_argument(
        "--receipt_timeout",
        type=positive_float,
        help=(
            "seconds to wait for the receipt - defaults to "
            f"{DEFAULT_RECEIPT_TIMEOUT}"
        ),
        nargs="?",
        const=DEFAULT_RECEIPT_TIMEOUT,
        default=DEFAULT_RECEIPT_TIMEOUT,
    )

    parser.add_argument(
        "--receipt_max_attempts",
        type=positive_int,
        help="maximum number of receipt lookups - defaults to no limit",
        nargs="?",
        default=None,
    )

    parser.add_argument(
        "--explorer_url",
        type=str,
        help="block explorer url used to print the transaction link",
        nargs="?",
        default=_get_env_or_default("USEROP_EXPLORER_URL", None, str),
    )

    parser.add_argument(
        "--metrics",
        help="enable prometheus stage metrics",
        nargs="?",
        const=True,
        default=False,
    )

    parser.add_argument(
        "--metrics_port",
        type=unsigned_int,
        help="prometheus metrics port - defaults to 8000",
        nargs="?",
        const=8000,
        default=8000,
    )

    parser.add_argument(
        "--verbose",
        help="show debug log",
        nargs="?",
        const=True,
        default=False,
    )

    return parser


def check_required_options(args: Namespace) -> None:
    missing_options = [
        option_help
        for option_name, option_help in REQUIRED_OPTIONS.items()
        if getattr(args, option_name, None) in (None, "")
    ]
    if len(missing_options) > 0:
        raise ConfigurationException(
            "Missing required options: " + ", ".join(missing_options))


def init_logging(args: Namespace):
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )


def init_owner_account(args: Namespace) -> LocalAccount:
    if args.keystore_file_path is not None:
        return import_owner_account(
            args.keystore_file_password, args.keystore_file_path
        )
    elif args.owner_secret is not None:
        return owner_account_from_private_key(args.owner_secret)
    else:
        return create_random_owner_account()


async def check_valid_ethereum_rpc_and_get_chain_id(
    chain_rpc: RpcClient
) -> str:
    try:
        chain_id_hex = await chain_rpc.send("eth_chainId", [])
    except RpcTransportException as excp:
        logging.critical(
            f"Error when connecting to Eth node {chain_rpc.nodes_urls[0]}: "
            f"{excp.message}"
        )
        sys.exit(1)
    if "result" not in chain_id_hex:
        logging.critical(f"Invalid Eth node {chain_rpc.nodes_urls[0]}")
        sys.exit(1)
    return chain_id_hex["result"]


async def check_valid_entrypoint(chain_rpc: RpcClient, entrypoint: Address):
    try:
        entrypoint_deployed = await is_deployed(chain_rpc, entrypoint)
    except (EthClientException, RpcTransportException):
        entrypoint_deployed = False
    if not entrypoint_deployed:
        logging.critical(f"entrypoint not deployed at {entrypoint}")
        sys.exit(1)


async def get_init_data(args: Namespace) -> InitData:
    init_logging(args)

    chain_rpc = RpcClient(args.chain_rpc_url)
    ethereum_node_chain_id_hex = await check_valid_ethereum_rpc_and_get_chain_id(
        chain_rpc
    )
    if hex(args.chain_id) != ethereum_node_chain_id_hex.lower():
        logging.critical(
            f"Invalid chain id {args.chain_id} with Eth node {args.chain_rpc_url}"
        )
        sys.exit(1)

    await check_valid_entrypoint(chain_rpc, args.entrypoint)

    paymaster_url = get_paymaster_url(
        args.paymaster_base_url, args.paymaster_chain, args.paymaster_api_key
    )
    bundler_url = args.bundler_url
    if bundler_url is None:
        bundler_url = paymaster_url

    owner = init_owner_account(args)

    ret = InitData(
        args.chain_rpc_url,
        args.chain_id,
        args.entrypoint,
        args.factory,
        paymaster_url,
        bundler_url,
        owner,
        args.to,
        args.value,
        args.data,
        args.salt,
        args.call_gas_limit,
        args.verification_gas_limit,
        args.pre_verification_gas,
        bool(args.legacy_mode),
        args.max_fee_per_gas_percentage_multiplier,
        args.max_priority_fee_per_gas_percentage_multiplier,
        bool(args.onchain_user_operation_hash),
        args.receipt_poll_interval,
        args.receipt_timeout,
        args.receipt_max_attempts,
        args.explorer_url,
        bool(args.metrics),
        args.metrics_port,
        __version__,
    )

    logging.info(f"Starting sponsored-userop version {__version__}")
    logging.info(f"Owner address: {owner.address}")

    return ret


async def parse_args(cmd_args: list[str]) -> InitData:
    argument_parser: ArgumentParser = initialize_argument_parser()
    args = argument_parser.parse_args(cmd_args)

    try:
        check_required_options(args)
    except ConfigurationException as excp:
        argument_parser.error(excp.message)

    init_data = await get_init_data(args)
    return init_data
