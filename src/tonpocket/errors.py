"""Error taxonomy for the wallet core.

Read paths (balance, history, NFTs) catch these and degrade to stale or empty
data. Write paths (transfers, connect responses) let them reach the caller,
which shows ``user_message``.
"""

from dataclasses import dataclass
from typing import Optional, Union


class WalletError(Exception):
    """Base class for wallet core errors."""

    code = "UNKNOWN_ERROR"
    user_message = (
        "An unexpected error occurred. Please try again or contact support "
        "if the problem persists."
    )
    recoverable = True

    def __init__(self, message: str = "", *, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class RateLimitError(WalletError):
    """Remote API throttled the request (HTTP 429 or textual marker)."""

    code = "RATE_LIMIT"
    user_message = "Too many requests. Please wait a moment and try again."


class NetworkError(WalletError):
    """Connectivity failure talking to a remote endpoint."""

    code = "NETWORK_ERROR"
    user_message = (
        "Unable to connect to the network. Please check your internet connection and try again."
    )


class LedgerAPIError(WalletError):
    """Remote ledger answered with an error envelope or unusable payload."""

    code = "API_ERROR"
    user_message = (
        "An error occurred while communicating with the blockchain. Please try again later."
    )

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidAddressError(WalletError):
    """Address is neither a raw nor a user-friendly TON address."""

    code = "INVALID_ADDRESS"
    user_message = "The recipient address is invalid. Please check and try again."


class InvalidAmountError(WalletError):
    """Amount entered by the user is malformed or out of range."""

    code = "INVALID_AMOUNT"
    user_message = "The amount you entered is invalid. Please enter a valid amount."


class InvalidRequestURIError(WalletError):
    """Scanned text is not a TON Connect request."""

    code = "INVALID_REQUEST"
    user_message = "This QR code is not a valid connection request."


class ManifestFetchError(WalletError):
    """dApp manifest could not be loaded or is malformed."""

    code = "MANIFEST_ERROR"
    user_message = "Failed to load DApp information. Please try again."


class CallbackResolutionError(WalletError):
    """No destination could be determined for the connect response."""

    code = "CALLBACK_ERROR"
    user_message = "Failed to determine where to send the connection response."


class ResponseDeliveryError(WalletError):
    """Connect response could not be dispatched."""

    code = "DELIVERY_ERROR"
    user_message = "Failed to send connection response. Please try again."


class WalletLockedError(WalletError):
    """Write operation requested while no signer is available."""

    code = "WALLET_LOCKED"
    user_message = "Please unlock your wallet to continue."
    recoverable = False


class TransferRateLimitedError(WalletError):
    """Local sliding-window limit on outgoing transfers was hit."""

    code = "RATE_LIMIT"
    user_message = "Too many requests. Please wait a moment and try again."

    def __init__(self, wait_seconds: float):
        super().__init__(
            f"Transfer rate limit hit, retry in {wait_seconds:.0f}s",
            user_message=(
                f"{self.user_message} Please wait {max(1, int(wait_seconds + 0.999))} seconds."
            ),
        )
        self.wait_seconds = wait_seconds


class TransferFailedError(WalletError):
    """Signer or network rejected an outgoing transfer."""

    code = "TRANSACTION_FAILED"
    user_message = "The transaction could not be completed. Please try again later."


@dataclass
class ErrorDetails:
    """User-facing description of an error."""

    code: str
    message: str
    user_message: str
    recoverable: bool


def _details(code: str, message: str, user_message: str, recoverable: bool = True) -> ErrorDetails:
    return ErrorDetails(
        code=code, message=message, user_message=user_message, recoverable=recoverable
    )


def get_user_friendly_error(error: Union[BaseException, str]) -> ErrorDetails:
    """Map any exception (or message) to a user-facing description."""
    if isinstance(error, WalletError):
        return _details(error.code, str(error), error.user_message, error.recoverable)

    message = str(error)
    upper = message.upper()

    if any(marker in upper for marker in ("RATE LIMIT", "RATELIMIT", "429", "TOO MANY REQUESTS")):
        return _details(RateLimitError.code, message, RateLimitError.user_message)

    if "TIMEOUT" in upper or "TIMED OUT" in upper:
        return _details("TIMEOUT", message, "The request took too long. Please try again.")

    if "NETWORK" in upper or "FETCH" in upper or "CONNECT" in upper:
        return _details(NetworkError.code, message, NetworkError.user_message)

    if "INSUFFICIENT" in upper:
        return _details(
            "INSUFFICIENT_BALANCE",
            message,
            "You don't have enough TON to complete this transaction. Please check your balance.",
            recoverable=False,
        )

    return _details(WalletError.code, message, WalletError.user_message)
