import asyncio

import pytest

from connectors.marketplace import MarketplaceError
from job_queue.error_classifier import ErrorKind, classify_error, format_retry_time


@pytest.mark.parametrize("error, kind", [
    (MarketplaceError("Too many requests", status_code=429), ErrorKind.RATE_LIMIT),
    (MarketplaceError("Shop quota exceeded"), ErrorKind.RATE_LIMIT),
    ("API rate limit reached", ErrorKind.RATE_LIMIT),
    (asyncio.TimeoutError(), ErrorKind.TIMEOUT),
    ("Request timed out after 30 seconds", ErrorKind.TIMEOUT),
    (ConnectionError("Connection reset by peer"), ErrorKind.TIMEOUT),
    (ConnectionRefusedError(111, "Connect call failed"), ErrorKind.TIMEOUT),
    (OSError("Name or service not known"), ErrorKind.TIMEOUT),
    ("getaddrinfo ENOTFOUND partner.shopeemobile.com", ErrorKind.TIMEOUT),
    ("socket hang up", ErrorKind.TIMEOUT),
    (MarketplaceError("Service Unavailable", status_code=503), ErrorKind.TIMEOUT),
    (MarketplaceError("Bad Gateway", status_code=502), ErrorKind.TIMEOUT),
    (MarketplaceError("Internal Server Error", status_code=500), ErrorKind.TIMEOUT),
    ("502: Bad Gateway", ErrorKind.TIMEOUT),
    ("upstream service unavailable", ErrorKind.TIMEOUT),
    (MarketplaceError("Access token expired", status_code=401), ErrorKind.PERMISSION_DENIED),
    (MarketplaceError("Forbidden", status_code=403), ErrorKind.PERMISSION_DENIED),
    ("App lacks scope item.write", ErrorKind.PERMISSION_DENIED),
    (MarketplaceError("Item with the same SKU", status_code=409), ErrorKind.ALREADY_EXISTS),
    ("Product already exists on platform", ErrorKind.ALREADY_EXISTS),
    (ValueError("Missing required fields: title"), ErrorKind.INVALID_DATA),
    (MarketplaceError("Unprocessable entity", status_code=422), ErrorKind.INVALID_DATA),
    ("Invalid category id", ErrorKind.INVALID_DATA),
    (RuntimeError("kaboom"), ErrorKind.UNKNOWN),
    ("item 14290 could not be processed", ErrorKind.UNKNOWN),
])
def test_classification(error, kind):
    assert classify_error(error).kind == kind


def test_rate_limit_is_retryable_with_backoff():
    classified = classify_error(MarketplaceError("Too many requests", status_code=429))

    assert classified.retryable
    assert classified.backoff
    assert classified.retry_after == 300
    assert classified.original_message == "429: Too many requests"


def test_timeout_is_retryable_without_backoff():
    classified = classify_error(asyncio.TimeoutError())

    assert classified.retryable
    assert not classified.backoff
    assert classified.retry_after == 60


@pytest.mark.parametrize("kind", [
    ErrorKind.PERMISSION_DENIED,
    ErrorKind.ALREADY_EXISTS,
    ErrorKind.INVALID_DATA,
    ErrorKind.UNKNOWN,
])
def test_terminal_kinds_are_not_retryable(kind):
    samples = {
        ErrorKind.PERMISSION_DENIED: "permission denied",
        ErrorKind.ALREADY_EXISTS: "duplicate listing",
        ErrorKind.INVALID_DATA: "validation failed",
        ErrorKind.UNKNOWN: "something odd happened",
    }
    classified = classify_error(samples[kind])

    assert classified.kind == kind
    assert not classified.retryable
    assert classified.retry_after is None


def test_status_code_wins_over_message():
    classified = classify_error(MarketplaceError("invalid access token", status_code=401))
    assert classified.kind == ErrorKind.PERMISSION_DENIED


def test_unknown_keeps_original_message():
    classified = classify_error(RuntimeError("widget exploded in a novel way"))

    assert classified.kind == ErrorKind.UNKNOWN
    assert classified.original_message == "widget exploded in a novel way"
    assert classified.user_message


def test_classifier_never_raises():
    class Unprintable(Exception):
        def __str__(self):
            raise RuntimeError("no")

    assert classify_error(Unprintable()).kind == ErrorKind.UNKNOWN
    assert classify_error(None).kind == ErrorKind.UNKNOWN
    assert classify_error("").kind == ErrorKind.UNKNOWN


def test_to_dict_uses_plain_values():
    data = classify_error("429").to_dict()
    assert data["kind"] == "RATE_LIMIT"
    assert data["retry_after"] == 300


@pytest.mark.parametrize("seconds, text", [
    (None, "now"),
    (1, "1 second"),
    (30, "30 seconds"),
    (60, "1 minute"),
    (300, "5 minutes"),
    (3600, "1 hour"),
    (7200, "2 hours"),
])
def test_format_retry_time(seconds, text):
    assert format_retry_time(seconds) == text
