"""Signal fusion.

Objective:
    Merge the raw, independently-fetched signals for one distribution group
    into a single normalized :class:`src.exchange_admin.models.ActivityRecord`.

Rules:
    - Failed sub-signals never abort fusion; they become explicit sentinels:
        - members -> ``member_count=None`` and the single
          "Unable to retrieve members" descriptor
        - owner resolution -> ``"<raw> (unresolved)"`` (one per identifier,
          so the owner count always matches the input)
        - trace queries -> :meth:`LastEvent.unavailable`
    - Timestamps pass through unchanged (``None`` stays ``None``).
    - For each trace direction the most recent event wins; ties keep the
      first-seen event.

This module performs no I/O.
"""

from datetime import datetime
from typing import Optional, Sequence

from .models import (
    ActivityRecord,
    GroupAttributes,
    LastEvent,
    MemberDescriptor,
    OwnerResolution,
    RawSignalBundle,
    SignalResult,
    TraceEvent,
)
from .normalize import as_utc


def _sort_key(event: TraceEvent) -> datetime:
    return as_utc(event.timestamp)


def select_latest_event(events: Sequence[TraceEvent]) -> Optional[TraceEvent]:
    """Pick the most recent trace event.

    Events without a timestamp cannot be ordered and are ignored. ``sorted``
    is stable, so among equal timestamps the first-seen event stays first.

    Args:
        events: Events in service order.

    Returns:
        Optional[TraceEvent]: Latest event, or None when there is none.
    """
    dated = [event for event in events if event.timestamp is not None]
    if not dated:
        return None
    return sorted(dated, key=_sort_key, reverse=True)[0]


def _last_event(result: SignalResult[list[TraceEvent]]) -> LastEvent:
    if result.failed:
        return LastEvent.unavailable()
    latest = select_latest_event(result.value or [])
    if latest is None:
        return LastEvent.none_in_window()
    return LastEvent.from_trace(latest)


def resolve_owners(owners: Sequence[OwnerResolution]) -> tuple[MemberDescriptor, ...]:
    """Map owner resolutions to descriptors, one per raw identifier."""
    descriptors = []
    for owner in owners:
        if owner.result.failed or owner.result.value is None:
            descriptors.append(MemberDescriptor.unresolved(owner.raw_identifier))
        else:
            descriptors.append(owner.result.value)
    return tuple(descriptors)


def _join(values: Sequence[str]) -> str:
    return "; ".join(values)


def fuse(attributes: GroupAttributes, bundle: RawSignalBundle) -> ActivityRecord:
    """Fuse group attributes and raw signals into an activity record.

    Args:
        attributes: Base group attributes (must carry a primary address).
        bundle: Raw signals for the same group.

    Returns:
        ActivityRecord: Immutable fused record.

    Raises:
        ValueError: If ``attributes`` has no primary address.
    """
    if not attributes.primary_address:
        raise ValueError(f"Group {attributes.identity!r} has no primary address")

    if bundle.members.failed:
        member_count = None
        members: tuple[MemberDescriptor, ...] = (MemberDescriptor.membership_unavailable(),)
    else:
        members = tuple(bundle.members.value or [])
        member_count = len(members)

    folder_stats = bundle.folder_stats.value
    last_modified = folder_stats.last_modified if folder_stats is not None else None

    custom_attributes = _join(
        [f"{name}={value}" for name, value in attributes.custom_attributes.items()]
    )

    return ActivityRecord(
        display_name=attributes.display_name or attributes.primary_address,
        primary_address=attributes.primary_address,
        member_count=member_count,
        members=members,
        owners=resolve_owners(bundle.owners),
        last_modified=last_modified,
        created=attributes.created,
        changed=attributes.changed,
        last_inbound=_last_event(bundle.inbound_trace),
        last_outbound=_last_event(bundle.outbound_trace),
        hidden_from_address_lists=attributes.hidden_from_address_lists,
        require_sender_authentication=attributes.require_sender_authentication,
        accept_messages_only_from=_join(attributes.accept_messages_only_from),
        reject_messages_from=_join(attributes.reject_messages_from),
        moderated_by=_join(attributes.moderated_by),
        notes=(attributes.notes or "").strip() or None,
        custom_attributes=custom_attributes,
    )
