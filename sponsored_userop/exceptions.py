from dataclasses import dataclass
from enum import Enum
from typing import Any


class ValidationExceptionCode(Enum):
    InvalidFields = -32602


@dataclass
class ValidationException(Exception):
    exception_code: ValidationExceptionCode
    message: str


@dataclass
class ConfigurationException(Exception):
    message: str


@dataclass
class RpcTransportException(Exception):
    method: str
    message: str


@dataclass
class OperationStateException(Exception):
    message: str


@dataclass
class ProtocolViolation(Exception):
    message: str
    raw_response: Any = None


@dataclass
class AddressDerivationFailed(Exception):
    message: str
    revert_data: str | None = None


@dataclass
class SponsorshipUnavailable(Exception):
    message: str
    raw_response: Any = None


@dataclass
class SponsorshipResponseInvalid(Exception):
    message: str
    raw_response: Any = None


@dataclass
class SigningFailed(Exception):
    message: str


@dataclass
class SubmissionRejected(Exception):
    code: int | None
    message: str
    raw_response: Any = None


@dataclass
class BundlerUnavailable(Exception):
    message: str
    raw_response: Any = None


@dataclass
class ReceiptTimeout(Exception):
    user_operation_hash: str
    attempts: int


@dataclass
class ReceiptMalformed(Exception):
    message: str
    raw_response: Any = None


@dataclass
class EthClientException(Exception):
    method: str
    message: str
    raw_response: Any = None
