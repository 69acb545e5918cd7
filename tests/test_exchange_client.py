from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from src.exchange_admin.exchange_client import ExchangeClient, ExchangeCommandError


def _client() -> ExchangeClient:
    settings = MagicMock()
    settings.organization = "contoso.onmicrosoft.com"
    auth = MagicMock()
    return ExchangeClient(settings, auth)


def _http_error(status_code: int, message: str) -> requests.HTTPError:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = {"error": {"code": "Error", "message": message}}
    return requests.HTTPError(f"{status_code} error", response=response)


def test_invoke_cmdlet_posts_cmdlet_input() -> None:
    """Ensure cmdlets are sent as CmdletInput to the tenant InvokeCommand URL."""

    client = _client()
    client._make_request = MagicMock(return_value={"value": [{"Identity": "x"}]})

    items = client.invoke_cmdlet("Get-Recipient", {"Identity": "x"})

    assert items == [{"Identity": "x"}]
    args, kwargs = client._make_request.call_args
    assert args[0] == "https://outlook.office365.com/adminapi/beta/contoso.onmicrosoft.com/InvokeCommand"
    assert args[1] == {"CmdletInput": {"CmdletName": "Get-Recipient", "Parameters": {"Identity": "x"}}}


def test_invoke_cmdlet_follows_next_link() -> None:
    """Paged results are concatenated across @odata.nextLink pages."""

    client = _client()
    client._make_request = MagicMock(
        side_effect=[
            {"value": [{"n": 1}], "@odata.nextLink": "https://next/page2"},
            {"value": [{"n": 2}]},
        ]
    )

    items = client.invoke_cmdlet("Get-DistributionGroup")

    assert items == [{"n": 1}, {"n": 2}]
    assert client._make_request.call_args_list[1].args[0] == "https://next/page2"


def test_invoke_cmdlet_wraps_http_errors() -> None:
    """HTTP failures surface as ExchangeCommandError with status and service message."""

    client = _client()
    client._make_request = MagicMock(side_effect=_http_error(403, "Access denied"))

    with pytest.raises(ExchangeCommandError) as excinfo:
        client.invoke_cmdlet("Get-MessageTrace")

    assert excinfo.value.status_code == 403
    assert excinfo.value.cmdlet == "Get-MessageTrace"
    assert "Access denied" in str(excinfo.value)
    assert excinfo.value.is_not_found is False


def test_get_folder_statistics_aggregates_rows() -> None:
    """The newest LastModifiedTime wins; item counts and sizes are summed."""

    client = _client()
    client._make_request = MagicMock(
        return_value={
            "value": [
                {"LastModifiedTime": "2025-01-01T00:00:00Z", "ItemsInFolder": 2, "FolderSize": "1 KB (1,024 bytes)"},
                {"LastModifiedTime": "/Date(1740787200000)/", "ItemsInFolder": 3, "FolderSize": 2048},
                {"LastModifiedTime": None, "ItemsInFolder": None, "FolderSize": None},
            ]
        }
    )

    stats = client.get_folder_statistics("sales@contoso.com")

    assert stats.last_modified == datetime(2025, 3, 1, tzinfo=timezone.utc)
    assert stats.item_count == 5
    assert stats.size_bytes == 3072


def test_get_folder_statistics_returns_none_without_folders() -> None:
    """No folder rows means no statistics rather than an error."""

    client = _client()
    client._make_request = MagicMock(return_value={"value": []})

    assert client.get_folder_statistics("sales@contoso.com") is None


def test_get_message_trace_formats_window_and_filters() -> None:
    """Trace queries send UTC window bounds and the requested address filter."""

    client = _client()
    client._make_request = MagicMock(
        return_value={
            "value": [
                {
                    "Received": "2025-05-30T08:15:00.1234567Z",
                    "SenderAddress": "ext@fabrikam.com",
                    "RecipientAddress": "sales@contoso.com",
                    "Subject": "Quote",
                }
            ]
        }
    )

    rows = client.get_message_trace(
        datetime(2025, 5, 22, 12, tzinfo=timezone.utc),
        datetime(2025, 6, 1, 12, tzinfo=timezone.utc),
        recipient="sales@contoso.com",
    )

    parameters = client._make_request.call_args.args[1]["CmdletInput"]["Parameters"]
    assert parameters["StartDate"] == "2025-05-22T12:00:00Z"
    assert parameters["EndDate"] == "2025-06-01T12:00:00Z"
    assert parameters["RecipientAddress"] == "sales@contoso.com"
    assert "SenderAddress" not in parameters
    assert rows[0].received == datetime(2025, 5, 30, 8, 15, 0, 123456, tzinfo=timezone.utc)
    assert rows[0].sender_address == "ext@fabrikam.com"


def test_get_mailbox_returns_none_when_not_found() -> None:
    """A not-found error from Get-Mailbox maps to None."""

    client = _client()
    client._make_request = MagicMock(
        side_effect=_http_error(404, "The operation couldn't be performed because object 'x' couldn't be found")
    )

    assert client.get_mailbox("x@contoso.com") is None


def test_get_mailbox_reraises_other_errors() -> None:
    """Errors other than not-found propagate."""

    client = _client()
    client._make_request = MagicMock(side_effect=_http_error(500, "Internal error"))

    with pytest.raises(ExchangeCommandError):
        client.get_mailbox("x@contoso.com")


def test_set_mailbox_type_sends_type_parameter() -> None:
    """Conversion runs Set-Mailbox with the Type parameter."""

    client = _client()
    client._make_request = MagicMock(return_value={})

    client.set_mailbox_type("jane@contoso.com", "Shared")

    body = client._make_request.call_args.args[1]
    assert body["CmdletInput"] == {
        "CmdletName": "Set-Mailbox",
        "Parameters": {"Identity": "jane@contoso.com", "Type": "Shared"},
    }


def test_get_recipient_raises_not_found_on_empty_result() -> None:
    """An empty Get-Recipient result is treated as not found."""

    client = _client()
    client._make_request = MagicMock(return_value={"value": []})

    with pytest.raises(ExchangeCommandError) as excinfo:
        client.get_recipient("ghost")

    assert excinfo.value.is_not_found is True
