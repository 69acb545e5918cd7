"""Per-group signal fetching.

Objective:
    Collect every raw fact the inactivity scan needs about one distribution
    group, capturing each sub-signal's failure as a value instead of letting
    it abort the group.

Responsibilities:
    - Fetch base group attributes (failure is raised: the group is skipped).
    - Fetch folder statistics, members and message trace hits, wrapping each
      in a :class:`src.exchange_admin.models.SignalResult`.
    - Resolve raw ``ManagedBy`` owner identifiers one by one, with a
      per-run resolution cache.

High-level call tree:
    - :class:`SignalFetcher`
        - :meth:`SignalFetcher.fetch_attributes`
        - :meth:`SignalFetcher.fetch_signals`
            - :meth:`SignalFetcher.fetch_folder_stats`
            - :meth:`SignalFetcher.fetch_members`
            - :meth:`SignalFetcher.fetch_owners` + :meth:`SignalFetcher.resolve_identifier`
            - :meth:`SignalFetcher.fetch_trace` (inbound, outbound)

Error handling:
    - Command/HTTP/validation errors become :class:`FetchError` values.
    - :class:`requests.ConnectionError` and :class:`requests.Timeout`
      propagate; the scanner aborts the run on them.
"""

import logging
from enum import Enum

import requests

from .exchange_client import ExchangeClient, ExchangeCommandError
from .models import (
    FetchError,
    FolderStatistics,
    GroupAttributes,
    MemberDescriptor,
    OwnerResolution,
    RawSignalBundle,
    SignalResult,
    TraceEvent,
    TraceWindow,
)

logger = logging.getLogger(__name__)

# Recoverable per-signal errors; ValueError covers Pydantic validation errors
_SIGNAL_ERRORS = (ExchangeCommandError, requests.HTTPError, ValueError)


class TraceDirection(str, Enum):
    """Message direction relative to the group."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


def _fetch_error(signal: str, error: Exception) -> FetchError:
    status_code = getattr(error, "status_code", None)
    if status_code is None:
        status_code = getattr(getattr(error, "response", None), "status_code", None)
    return FetchError(signal=signal, message=str(error), status_code=status_code)


class SignalFetcher:
    """
    Fetches raw signals for distribution groups.

    Attributes:
        exchange_client: Exchange admin API client.
        _owner_cache: Resolution results keyed by lowercased raw identifier.
    """

    def __init__(self, exchange_client: ExchangeClient) -> None:
        """
        Initialize fetcher.

        Args:
            exchange_client: Exchange admin API client.
        """
        self.exchange_client = exchange_client
        self._owner_cache: dict[str, SignalResult[MemberDescriptor]] = {}

    def fetch_attributes(self, identity: str) -> GroupAttributes:
        """Fetch base group attributes.

        Args:
            identity: Group identity or address.

        Returns:
            GroupAttributes: Attributes.

        Raises:
            ExchangeCommandError: If the group cannot be read.
        """
        return self.exchange_client.get_distribution_group(identity)

    def fetch_folder_stats(self, identity: str) -> SignalResult[FolderStatistics]:
        """Fetch folder statistics; ``ok(None)`` means no statistics exist."""
        try:
            return SignalResult.ok(self.exchange_client.get_folder_statistics(identity))
        except _SIGNAL_ERRORS as e:
            return SignalResult.failure(_fetch_error("folder_stats", e))

    def fetch_members(self, identity: str) -> SignalResult[list[MemberDescriptor]]:
        """Fetch direct members as descriptors."""
        try:
            recipients = self.exchange_client.get_distribution_group_members(identity)
        except _SIGNAL_ERRORS as e:
            return SignalResult.failure(_fetch_error("members", e))
        return SignalResult.ok([r.to_descriptor() for r in recipients])

    def fetch_owners(self, attributes: GroupAttributes) -> list[str]:
        """Return the raw, unresolved owner identifiers of a group."""
        return list(attributes.managed_by)

    def resolve_identifier(self, raw_identifier: str) -> SignalResult[MemberDescriptor]:
        """Resolve a raw owner identifier to a descriptor.

        Results (including failures) are cached for the lifetime of the
        fetcher since the same owners recur across many groups.

        Args:
            raw_identifier: Name, alias, DN or address.

        Returns:
            SignalResult[MemberDescriptor]: Resolved descriptor or failure.
        """
        key = raw_identifier.strip().lower()
        cached = self._owner_cache.get(key)
        if cached is not None:
            return cached

        try:
            recipient = self.exchange_client.get_recipient(raw_identifier)
            result = SignalResult.ok(recipient.to_descriptor())
        except _SIGNAL_ERRORS as e:
            result = SignalResult.failure(_fetch_error("owner", e))

        self._owner_cache[key] = result
        return result

    def fetch_trace(
        self, address: str, direction: TraceDirection, window: TraceWindow
    ) -> SignalResult[list[TraceEvent]]:
        """Fetch message trace hits for one direction.

        Inbound hits are messages addressed to the group (counterpart = sender);
        outbound hits are messages sent from the group (counterpart =
        recipient).

        Args:
            address: Group primary address.
            direction: Trace direction.
            window: Lookback window.

        Returns:
            SignalResult[list[TraceEvent]]: Events in service order, or failure.
        """
        signal = f"{direction.value}_trace"
        try:
            if direction == TraceDirection.INBOUND:
                rows = self.exchange_client.get_message_trace(
                    window.start, window.end, recipient=address
                )
                events = [TraceEvent(r.received, r.sender_address, r.subject) for r in rows]
            else:
                rows = self.exchange_client.get_message_trace(
                    window.start, window.end, sender=address
                )
                events = [TraceEvent(r.received, r.recipient_address, r.subject) for r in rows]
        except _SIGNAL_ERRORS as e:
            return SignalResult.failure(_fetch_error(signal, e))
        return SignalResult.ok(events)

    def fetch_signals(self, attributes: GroupAttributes, window: TraceWindow) -> RawSignalBundle:
        """Fetch every sub-signal for a group.

        Args:
            attributes: Group attributes (already fetched).
            window: Message trace lookback window.

        Returns:
            RawSignalBundle: All signals, each independently successful or failed.
        """
        identity = attributes.lookup_identity
        owners = [
            OwnerResolution(raw, self.resolve_identifier(raw))
            for raw in self.fetch_owners(attributes)
        ]
        return RawSignalBundle(
            folder_stats=self.fetch_folder_stats(identity),
            members=self.fetch_members(identity),
            owners=owners,
            inbound_trace=self.fetch_trace(attributes.primary_address, TraceDirection.INBOUND, window),
            outbound_trace=self.fetch_trace(attributes.primary_address, TraceDirection.OUTBOUND, window),
        )
