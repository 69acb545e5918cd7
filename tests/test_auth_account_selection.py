from unittest.mock import MagicMock

import pytest

from src.exchange_admin.auth import EXCHANGE_RESOURCE, GRAPH_RESOURCE, ServiceAuthenticator


def test_select_account_defaults_to_first_when_no_preferred_username() -> None:
    """Return the first cached account when no preference is configured."""

    settings = MagicMock()
    settings.admin_account_username = None

    auth = ServiceAuthenticator(settings)

    accounts = [
        {"username": "first@example.com"},
        {"username": "second@example.com"},
    ]

    selected = auth._select_account(accounts)
    assert selected == accounts[0]


def test_select_account_matches_preferred_username_case_insensitive() -> None:
    """Select the cached account matching the preferred username."""

    settings = MagicMock()
    settings.admin_account_username = "Second@Example.com"

    auth = ServiceAuthenticator(settings)

    accounts = [
        {"username": "first@example.com"},
        {"username": "second@example.com"},
    ]

    selected = auth._select_account(accounts)
    assert selected == accounts[1]


def test_select_account_raises_when_preferred_username_missing() -> None:
    """Raise a clear error when the preferred username is not in cache."""

    settings = MagicMock()
    settings.admin_account_username = "missing@example.com"

    auth = ServiceAuthenticator(settings)

    accounts = [
        {"username": "first@example.com"},
        {"username": "second@example.com"},
    ]

    with pytest.raises(ValueError, match="ADMIN_ACCOUNT_USERNAME"):
        auth._select_account(accounts)


def test_client_credentials_request_default_scope_per_resource() -> None:
    """Client credentials tokens are requested with the resource's /.default scope."""

    settings = MagicMock()
    settings.use_client_credentials = True

    auth = ServiceAuthenticator(settings)
    app = MagicMock()
    app.acquire_token_for_client.return_value = {"access_token": "token-1"}
    auth._app = app

    assert auth.get_auth_headers(EXCHANGE_RESOURCE)["Authorization"] == "Bearer token-1"
    app.acquire_token_for_client.assert_called_with(scopes=["https://outlook.office365.com/.default"])

    auth.get_access_token(GRAPH_RESOURCE)
    app.acquire_token_for_client.assert_called_with(scopes=["https://graph.microsoft.com/.default"])


def test_client_credentials_failure_raises_runtime_error() -> None:
    """A failed token request raises RuntimeError with the service description."""

    settings = MagicMock()
    settings.use_client_credentials = True

    auth = ServiceAuthenticator(settings)
    auth._app = MagicMock()
    auth._app.acquire_token_for_client.return_value = {
        "error": "invalid_client",
        "error_description": "AADSTS7000215: Invalid client secret",
    }

    with pytest.raises(RuntimeError, match="Invalid client secret"):
        auth.get_access_token(EXCHANGE_RESOURCE)
