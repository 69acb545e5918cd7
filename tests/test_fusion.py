from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from src.exchange_admin.fusion import fuse, resolve_owners, select_latest_event
from src.exchange_admin.models import (
    EventStatus,
    FetchError,
    FolderStatistics,
    GroupAttributes,
    MemberDescriptor,
    OwnerResolution,
    RawSignalBundle,
    SignalResult,
    TraceEvent,
)

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _attributes(**overrides) -> GroupAttributes:
    data = {
        "Identity": "sales",
        "DisplayName": "Sales Team",
        "PrimarySmtpAddress": "sales@contoso.com",
        "ManagedBy": ["alice"],
    }
    data.update(overrides)
    return GroupAttributes.model_validate(data)


def test_select_latest_event_picks_most_recent() -> None:
    """Hits at T-5, T-1, T-3 select T-1."""

    events = [
        TraceEvent(NOW - timedelta(days=5), "a@x.com"),
        TraceEvent(NOW - timedelta(days=1), "b@x.com"),
        TraceEvent(NOW - timedelta(days=3), "c@x.com"),
    ]

    assert select_latest_event(events).counterpart == "b@x.com"


def test_select_latest_event_tie_keeps_first_seen() -> None:
    """Equal timestamps resolve to the first event in input order."""

    events = [
        TraceEvent(NOW, "first@x.com"),
        TraceEvent(NOW, "second@x.com"),
    ]

    assert select_latest_event(events).counterpart == "first@x.com"


def test_select_latest_event_ignores_undated_events() -> None:
    """Events without a timestamp are never selected."""

    assert select_latest_event([TraceEvent(None, "a@x.com")]) is None
    assert select_latest_event([]) is None


def test_select_latest_event_orders_naive_and_aware_timestamps() -> None:
    """Naive timestamps are read as UTC when compared with aware ones."""

    events = [
        TraceEvent(datetime(2025, 6, 1, 11, 0, 0), "naive@x.com"),
        TraceEvent(datetime(2025, 6, 1, 12, 30, 0, tzinfo=timezone(timedelta(hours=2))), "aware@x.com"),
    ]

    assert select_latest_event(events).counterpart == "naive@x.com"


@given(st.lists(st.booleans(), max_size=20))
def test_owner_count_matches_identifier_count(outcomes: list[bool]) -> None:
    """One owner descriptor is produced per raw identifier, failures included."""

    owners = []
    for i, ok in enumerate(outcomes):
        raw = f"owner{i}"
        if ok:
            result = SignalResult.ok(MemberDescriptor(display_name=raw, address=f"{raw}@x.com"))
        else:
            result = SignalResult.failure(FetchError("owner", "not found", 404))
        owners.append(OwnerResolution(raw, result))

    descriptors = resolve_owners(owners)

    assert len(descriptors) == len(outcomes)
    for descriptor, ok in zip(descriptors, outcomes):
        assert descriptor.resolved is ok


def test_unresolved_owner_keeps_raw_identifier() -> None:
    """A failed owner lookup renders the raw identifier with an unresolved marker."""

    owners = [OwnerResolution("jdoe", SignalResult.failure(FetchError("owner", "boom")))]

    (descriptor,) = resolve_owners(owners)

    assert descriptor.display_name == "jdoe (unresolved)"
    assert descriptor.label == "jdoe (unresolved)"


def test_fuse_maps_failures_to_sentinels() -> None:
    """Member and trace failures become explicit sentinels instead of raising."""

    bundle = RawSignalBundle(
        folder_stats=SignalResult.failure(FetchError("folder_stats", "denied", 403)),
        members=SignalResult.failure(FetchError("members", "denied", 403)),
        owners=[OwnerResolution("alice", SignalResult.failure(FetchError("owner", "gone")))],
        inbound_trace=SignalResult.failure(FetchError("inbound_trace", "throttled", 429)),
        outbound_trace=SignalResult.ok([]),
    )

    record = fuse(_attributes(), bundle)

    assert record.member_count is None
    assert [m.label for m in record.members] == ["Unable to retrieve members"]
    assert record.owners[0].label == "alice (unresolved)"
    assert record.last_modified is None
    assert record.last_inbound.status == EventStatus.UNAVAILABLE
    assert record.last_outbound.status == EventStatus.NONE_IN_WINDOW


def test_fuse_copies_attributes_and_signals() -> None:
    """Successful signals and group attributes land in the record unchanged."""

    modified = NOW - timedelta(days=40)
    attributes = _attributes(
        WhenCreatedUTC="2020-01-02T03:04:05Z",
        ModeratedBy=["mod1", "mod2"],
        AcceptMessagesOnlyFromSendersOrMembers="hr",
        Notes="  ",
        CustomAttribute3="cost-center-7",
    )
    members = [MemberDescriptor(display_name="Bob", address="bob@contoso.com")]
    bundle = RawSignalBundle(
        folder_stats=SignalResult.ok(FolderStatistics(last_modified=modified, item_count=3)),
        members=SignalResult.ok(members),
        owners=[
            OwnerResolution(
                "alice",
                SignalResult.ok(MemberDescriptor(display_name="Alice", address="alice@contoso.com")),
            )
        ],
        inbound_trace=SignalResult.ok([TraceEvent(NOW, "ext@fabrikam.com", "Hello")]),
        outbound_trace=SignalResult.ok([]),
    )

    record = fuse(attributes, bundle)

    assert record.primary_address == "sales@contoso.com"
    assert record.member_count == 1
    assert record.owners[0].label == "Alice <alice@contoso.com>"
    assert record.last_modified == modified
    assert record.created == datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert record.moderated_by == "mod1; mod2"
    assert record.accept_messages_only_from == "hr"
    assert record.notes is None
    assert record.custom_attributes == "CustomAttribute3=cost-center-7"
    assert record.last_inbound.counterpart == "ext@fabrikam.com"
    assert record.last_inbound.subject == "Hello"


def test_fuse_requires_primary_address() -> None:
    """Groups without a primary address cannot be fused."""

    with pytest.raises(ValueError):
        fuse(_attributes(PrimarySmtpAddress=None), RawSignalBundle())
