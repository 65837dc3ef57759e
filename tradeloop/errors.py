"""Error taxonomy shared by the chain/swap adapters, the vault and the orchestrator.

Adapters at the network boundary convert whatever their library raises into one
of these types, so callers only ever branch on this closed set.
"""

from enum import Enum
from typing import Any

INSUFFICIENT_MARKERS = (
    "insufficient funds",
    "gas required exceeds allowance",
)


class ErrorClass(str, Enum):
    RETRYABLE = "retryable"
    FUNDS_INSUFFICIENT = "funds_insufficient"
    REVERTED = "reverted"
    FATAL = "fatal"


class TradeLoopError(Exception):
    """Base class; carries a code/name/message triple for structured logs."""

    name = "TradeLoopError"

    def __init__(self, message: str, code: int | str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def to_log_dict(self) -> dict[str, Any]:
        return {"code": self.code, "name": self.name, "message": self.message}


class NetworkError(TradeLoopError):
    """Swap service transport or HTTP failure."""

    name = "NetworkError"

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message, code=status_code)
        self.status_code = status_code
        self.body = body

    @property
    def is_permanent(self) -> bool:
        return self.status_code in PERMANENT_STATUS_CODES

    def to_log_dict(self) -> dict[str, Any]:
        data = super().to_log_dict()
        data["body"] = self.body
        return data


# Bad request, auth and unknown-route responses won't change on retry.
PERMANENT_STATUS_CODES = frozenset({400, 401, 403, 404, 422})


class ChainError(TradeLoopError):
    """RPC or contract-call failure."""

    name = "ChainError"

    def __init__(self, message: str, code: int | str | None = None, detail: str | None = None):
        super().__init__(message, code=code)
        self.detail = detail or message

    def to_log_dict(self) -> dict[str, Any]:
        data = super().to_log_dict()
        data["detail"] = self.detail
        return data


class FundsInsufficientError(ChainError):
    """The acting account cannot pay for the operation."""

    name = "FundsInsufficientError"


class TransactionRevertedError(ChainError):
    """Mined with a failed status. Waiting on the same hash again cannot succeed."""

    name = "TransactionRevertedError"


class PersistenceError(TradeLoopError):
    name = "PersistenceError"


class DecodeError(TradeLoopError):
    name = "DecodeError"


class UnknownError(TradeLoopError):
    name = "UnknownError"


class ConfigError(TradeLoopError):
    name = "ConfigError"


def is_insufficient_detail(text: str | None) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in INSUFFICIENT_MARKERS)


def chain_error_from(exc: BaseException) -> ChainError:
    """Build a ChainError (or FundsInsufficientError) from a web3/RPC exception.

    web3 raises either a ValueError wrapping the JSON-RPC error dict or an
    exception exposing ``rpc_response``; both shapes are flattened here.
    """
    if isinstance(exc, ChainError):
        return exc

    code: int | str | None = None
    detail: str | None = None

    rpc_response = getattr(exc, "rpc_response", None)
    payload = None
    if isinstance(rpc_response, dict):
        payload = rpc_response.get("error")
    elif exc.args and isinstance(exc.args[0], dict):
        payload = exc.args[0]

    if isinstance(payload, dict):
        code = payload.get("code")
        detail = payload.get("message")
        data = payload.get("data")
        if isinstance(data, str) and data:
            detail = f"{detail}: {data}" if detail else data

    message = str(exc) or type(exc).__name__
    detail = detail or message
    if is_insufficient_detail(detail) or is_insufficient_detail(message):
        return FundsInsufficientError(message, code=code, detail=detail)
    error = ChainError(message, code=code, detail=detail)
    error.name = type(exc).__name__
    return error


def classify(error: BaseException) -> ErrorClass:
    """Decide whether the orchestrator retries, rotates or gives up."""
    if isinstance(error, TransactionRevertedError):
        return ErrorClass.REVERTED
    if isinstance(error, FundsInsufficientError):
        return ErrorClass.FUNDS_INSUFFICIENT
    if isinstance(error, ConfigError):
        return ErrorClass.FATAL
    if isinstance(error, NetworkError):
        return ErrorClass.RETRYABLE
    if isinstance(error, ChainError) and is_insufficient_detail(error.detail):
        return ErrorClass.FUNDS_INSUFFICIENT
    return ErrorClass.RETRYABLE


def describe(error: BaseException) -> dict[str, Any]:
    """Structured code/name/message view of any exception for logging."""
    if isinstance(error, TradeLoopError):
        return error.to_log_dict()
    return {"code": None, "name": type(error).__name__, "message": str(error)}
