"""Tests for the custom exception hierarchy."""

import pytest

from basecamp_migrator.exceptions import (
    APIError,
    AuthenticationError,
    ConfigError,
    MigrationAbortedError,
    MigratorError,
    RunLockedError,
    RunStateNotFoundError,
    UserMappingError,
)

EXCEPTION_CLASSES = [
    ConfigError,
    APIError,
    AuthenticationError,
    UserMappingError,
    MigrationAbortedError,
    RunStateNotFoundError,
    RunLockedError,
]


class TestExceptionHierarchy:
    """Tests for exception types, inheritance, and message handling."""

    @pytest.mark.parametrize("exc_class", EXCEPTION_CLASSES)
    def test_each_exception_is_caught_by_migrator_error(self, exc_class):
        with pytest.raises(MigratorError):
            raise exc_class("caught by base")

    @pytest.mark.parametrize("exc_class", [MigratorError, *EXCEPTION_CLASSES])
    def test_message_is_preserved(self, exc_class):
        msg = f"specific message for {exc_class.__name__}"
        with pytest.raises(exc_class, match=msg):
            raise exc_class(msg)

    def test_authentication_error_is_not_an_api_error(self):
        assert not issubclass(AuthenticationError, APIError)


class TestAPIError:
    """Tests for APIError attributes and retry classification."""

    def test_defaults(self):
        err = APIError("boom")
        assert err.status_code is None
        assert err.response is None
        assert err.retry_after is None

    def test_carries_response_details(self):
        err = APIError("rate limited", status_code=429, response={"error": "slow"}, retry_after=7.0)
        assert err.status_code == 429
        assert err.response == {"error": "slow"}
        assert err.retry_after == 7.0

    @pytest.mark.parametrize("status", [None, 429, 500, 502, 503])
    def test_retryable_statuses(self, status):
        assert APIError("x", status_code=status).retryable

    @pytest.mark.parametrize("status", [400, 403, 404, 422])
    def test_client_errors_are_not_retryable(self, status):
        assert not APIError("x", status_code=status).retryable
