import csv
import io
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from src.exchange_admin.exchange_client import ExchangeCommandError
from src.exchange_admin.fetchers import SignalFetcher
from src.exchange_admin.models import (
    FolderStatistics,
    GroupAttributes,
    MessageTraceRow,
    Recipient,
)
from src.exchange_admin.scanner import GroupInactivityScanner

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _group(address: str, name: str, **extra) -> GroupAttributes:
    return GroupAttributes.model_validate(
        {"Identity": name, "DisplayName": name, "PrimarySmtpAddress": address, **extra}
    )


def _scanner(groups: list[GroupAttributes], folder_stats: dict, traces: dict | None = None):
    settings = MagicMock()
    settings.group_name_filter = None
    settings.allowed_domain_list = []

    scanner = GroupInactivityScanner(settings=settings)

    client = MagicMock()
    by_address = {g.primary_address: g for g in groups}

    def get_group(identity):
        if identity not in by_address:
            raise ExchangeCommandError("Get-DistributionGroup", "couldn't be found", 404)
        return by_address[identity]

    def get_trace(start, end, sender=None, recipient=None):
        return (traces or {}).get((sender, recipient), [])

    client.get_distribution_groups.return_value = groups
    client.get_distribution_group.side_effect = get_group
    client.get_folder_statistics.side_effect = lambda identity: folder_stats.get(identity)
    client.get_distribution_group_members.return_value = [
        Recipient(display_name="Robert Smith", primary_address="robert.smith@contoso.com")
    ]
    client.get_recipient.side_effect = lambda raw: Recipient(display_name=raw, primary_address=f"{raw}@contoso.com")
    client.get_message_trace.side_effect = get_trace

    scanner.exchange_client = client
    scanner.fetcher = SignalFetcher(client)
    return scanner, client


def test_scan_reports_only_inactive_groups(tmp_path) -> None:
    """A (stale) and C (no folder stats, recent mail) are reported; B (fresh) is not."""

    groups = [
        _group("a@contoso.com", "Group A", ManagedBy=["alice"]),
        _group("b@contoso.com", "Group B"),
        _group("c@contoso.com", "Group C"),
    ]
    folder_stats = {
        "a@contoso.com": FolderStatistics(last_modified=NOW - timedelta(days=100)),
        "b@contoso.com": FolderStatistics(last_modified=NOW - timedelta(days=10)),
    }
    traces = {
        (None, "c@contoso.com"): [
            MessageTraceRow(
                received=NOW - timedelta(days=1),
                sender_address="ext@fabrikam.com",
                recipient_address="c@contoso.com",
                subject="Still here",
            )
        ]
    }
    scanner, client = _scanner(groups, folder_stats, traces)

    summary = scanner.run(inactive_days=90, trace_days=10, output_dir=tmp_path, now=NOW)

    assert summary.processed == 3
    assert summary.inactive == 2
    assert summary.skipped == 0
    assert summary.success is True

    table = summary.csv_path.read_text(encoding="utf-8-sig")
    html = summary.html_path.read_text(encoding="utf-8")
    rows = list(csv.DictReader(io.StringIO(table)))
    assert [row["PrimarySmtpAddress"] for row in rows] == ["a@contoso.com", "c@contoso.com"]
    assert '<p class="address">a@contoso.com</p>' in html
    assert '<p class="address">c@contoso.com</p>' in html
    assert '<p class="address">b@contoso.com</p>' not in html
    assert "Group B" not in table and "Group B" not in html
    assert "ext@fabrikam.com" in table
    assert "alice &lt;alice@contoso.com&gt;" in html
    client.close.assert_called_once()


def test_attribute_failure_skips_group_and_continues(tmp_path) -> None:
    """A group whose attributes cannot be read is recorded and the run continues."""

    listed = [_group("gone@contoso.com", "Gone"), _group("a@contoso.com", "Group A")]
    scanner, client = _scanner([listed[1]], {})
    client.get_distribution_groups.return_value = listed

    summary = scanner.run(inactive_days=90, trace_days=10, output_dir=tmp_path, now=NOW)

    assert summary.processed == 1
    assert summary.skipped == 1
    assert summary.failures[0].identity == "gone@contoso.com"
    assert summary.success is False


def test_signal_failure_does_not_skip_group(tmp_path) -> None:
    """A failing sub-signal is logged but the group is still classified."""

    scanner, client = _scanner([_group("a@contoso.com", "Group A")], {})
    client.get_distribution_group_members.side_effect = ExchangeCommandError(
        "Get-DistributionGroupMember", "Access denied", 403
    )

    summary = scanner.run(inactive_days=90, trace_days=10, output_dir=tmp_path, now=NOW)

    assert summary.processed == 1
    assert summary.inactive == 1
    assert "Unable to retrieve members" in summary.csv_path.read_text(encoding="utf-8-sig")


def test_connection_error_aborts_and_closes_session(tmp_path) -> None:
    """Losing the connection aborts the run without writing reports."""

    scanner, client = _scanner([_group("a@contoso.com", "Group A")], {})
    client.get_folder_statistics.side_effect = requests.ConnectionError("reset")

    with pytest.raises(requests.ConnectionError):
        scanner.run(inactive_days=90, trace_days=10, output_dir=tmp_path, now=NOW)

    client.close.assert_called_once()
    assert list(tmp_path.iterdir()) == []


def test_select_groups_filters_and_deduplicates() -> None:
    """Name wildcard, domain allow-list and address de-duplication apply in order."""

    scanner, _ = _scanner([], {})
    groups = [
        _group("sales@contoso.com", "Sales EMEA"),
        _group("sales@fabrikam.com", "Sales US"),
        _group("SALES@contoso.com", "Sales Copy"),
        _group("hr@contoso.com", "HR"),
        _group("", "No Address"),
    ]

    selected = scanner.select_groups(groups, name_filter="sales*", allowed_domains=["contoso.com"])

    assert [g.display_name for g in selected] == ["Sales EMEA"]


def test_limit_caps_scanned_groups(tmp_path) -> None:
    """Only the first N selected groups are scanned."""

    groups = [_group(f"g{i}@contoso.com", f"G{i}") for i in range(5)]
    scanner, client = _scanner(groups, {})

    summary = scanner.run(inactive_days=90, trace_days=10, output_dir=tmp_path, limit=2, now=NOW)

    assert summary.processed == 2
    assert client.get_distribution_group.call_count == 2


@pytest.mark.parametrize(
    "options",
    [
        {"inactive_days": 0, "trace_days": 10},
        {"inactive_days": -5, "trace_days": 10},
        {"inactive_days": 90, "trace_days": 0},
        {"inactive_days": 90, "trace_days": 91},
        {"inactive_days": 90, "trace_days": 10, "limit": 0},
    ],
)
def test_out_of_range_options_are_rejected_before_any_call(tmp_path, options) -> None:
    """Zero or negative day counts are errors, not a silent fallback to settings."""

    scanner, client = _scanner([_group("a@contoso.com", "Group A")], {})

    with pytest.raises(ValueError):
        scanner.run(output_dir=tmp_path, now=NOW, **options)

    client.get_distribution_groups.assert_not_called()
    assert list(tmp_path.iterdir()) == []


def test_one_day_threshold_is_honoured(tmp_path) -> None:
    """A group modified 30 days ago is inactive under a 1 day threshold."""

    groups = [_group("a@contoso.com", "Group A")]
    folder_stats = {"a@contoso.com": FolderStatistics(last_modified=NOW - timedelta(days=30))}
    scanner, _ = _scanner(groups, folder_stats)

    summary = scanner.run(inactive_days=1, trace_days=10, output_dir=tmp_path, now=NOW)

    assert summary.inactive == 1


def test_unset_options_fall_back_to_settings(tmp_path) -> None:
    """Omitted day counts come from settings."""

    groups = [_group("a@contoso.com", "Group A")]
    folder_stats = {"a@contoso.com": FolderStatistics(last_modified=NOW - timedelta(days=30))}
    scanner, client = _scanner(groups, folder_stats)
    scanner.settings.inactivity_threshold_days = 20
    scanner.settings.trace_window_days = 5

    summary = scanner.run(output_dir=tmp_path, now=NOW)

    assert summary.inactive == 1
    start = client.get_message_trace.call_args.args[0]
    assert start == NOW - timedelta(days=5)
