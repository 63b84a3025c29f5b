"""Exceptions and AWS error classification."""

from typing import TYPE_CHECKING

from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    from conveyor.publisher import PublishFailure, PublishResult

# Error codes that retrying will not fix: bad credentials, missing
# permissions, or a queue/topic that does not exist.
FATAL_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "AuthorizationError",
        "AWS.SimpleQueueService.NonExistentQueue",
        "ExpiredToken",
        "InvalidClientTokenId",
        "InvalidSecurity",
        "NotFound",
        "NotFoundException",
        "QueueDoesNotExist",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
    }
)


class ConveyorError(Exception):
    """Base class for conveyor errors."""


class ProvisioningError(ConveyorError):
    """Queue or topic setup failed; consumption/publishing cannot start."""


class ConsumerError(ConveyorError):
    """The consumer loop stopped because of a non-retryable error."""


class PublishError(ConveyorError):
    """Messages could not be published.

    Carries the failed messages and, when available, the partial result
    including the messages that were published successfully.
    """

    def __init__(
        self,
        message: str,
        failures: "list[PublishFailure] | None" = None,
        result: "PublishResult | None" = None,
    ) -> None:
        self.failures = failures or []
        self.result = result
        super().__init__(message)


def error_code(exc: BaseException) -> str | None:
    """Return the AWS error code of a botocore ClientError, if any."""
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code")
        return str(code) if code is not None else None
    return None


def is_fatal_error(exc: BaseException) -> bool:
    """Return True for authorization and queue/topic-not-found errors."""
    return error_code(exc) in FATAL_ERROR_CODES


def is_transient_error(exc: BaseException) -> bool:
    """Return True for errors worth retrying (throttling, network, 5xx)."""
    if isinstance(exc, ClientError):
        return not is_fatal_error(exc)
    return isinstance(exc, BotoCoreError | OSError | TimeoutError)
