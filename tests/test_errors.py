"""Tests for AWS error classification."""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from conveyor.errors import (
    PublishError,
    error_code,
    is_fatal_error,
    is_transient_error,
)


def make_client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "ReceiveMessage")


@pytest.mark.parametrize(
    "code",
    [
        "AccessDenied",
        "AWS.SimpleQueueService.NonExistentQueue",
        "QueueDoesNotExist",
        "InvalidClientTokenId",
        "NotFound",
    ],
)
def test_fatal_codes(code: str) -> None:
    exc = make_client_error(code)
    assert is_fatal_error(exc)
    assert not is_transient_error(exc)


@pytest.mark.parametrize(
    "code", ["ThrottlingException", "RequestThrottled", "InternalError", "KMS.Throttling"]
)
def test_transient_codes(code: str) -> None:
    exc = make_client_error(code)
    assert not is_fatal_error(exc)
    assert is_transient_error(exc)


def test_network_errors_are_transient() -> None:
    assert is_transient_error(EndpointConnectionError(endpoint_url="http://localhost"))
    assert is_transient_error(ConnectionResetError())
    assert is_transient_error(TimeoutError())


def test_programming_errors_are_not_transient() -> None:
    assert not is_transient_error(ValueError("bad"))
    assert not is_transient_error(KeyError("Messages"))


def test_error_code() -> None:
    assert error_code(make_client_error("AccessDenied")) == "AccessDenied"
    assert error_code(ValueError()) is None


def test_publish_error_carries_failures() -> None:
    err = PublishError("2 failed")
    assert err.failures == []
    assert err.result is None
    assert str(err) == "2 failed"
