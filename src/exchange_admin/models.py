"""Data models used across the application.

Objective:
    Centralize all strongly-typed data structures representing:
    - Recipient objects returned by Exchange cmdlets (groups, members,
      mailboxes, message trace rows, folder statistics)
    - Per-signal fetch results with explicit failure values
    - Fused activity records consumed by the classifier and report assembler
    - Per-run and per-mailbox outcomes produced by the workflows

Design notes:
    - Cmdlet models use Pydantic aliases to match Exchange property names
      (e.g. ``PrimarySmtpAddress`` -> :attr:`GroupAttributes.primary_address`).
    - ``model_config = ConfigDict(populate_by_name=True)`` is used to allow
      constructing models with either alias names or pythonic field names.
    - Raw values are normalized by ``mode="before"`` validators built on
      :mod:`src.exchange_admin.normalize`.
    - :class:`ActivityRecord` is frozen; multi-valued fields are tuples.

High-level structure:
    - Exchange primitives:
        - :class:`GroupAttributes`
        - :class:`Recipient`
        - :class:`FolderStatistics`
        - :class:`MessageTraceRow`
        - :class:`Mailbox` / :class:`MailboxStatistics`
    - Signal primitives:
        - :class:`FetchError` / :class:`SignalResult`
        - :class:`OwnerResolution`
        - :class:`TraceEvent` / :class:`TraceWindow`
        - :class:`RawSignalBundle`
    - Core records:
        - :class:`MemberDescriptor`
        - :class:`LastEvent`
        - :class:`ActivityRecord`
    - Outcomes:
        - :class:`ScanFailure` / :class:`ScanSummary`
        - :class:`ConversionResult`
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import MEMBERS_UNAVAILABLE, NOT_AVAILABLE, UNRESOLVED_SUFFIX
from .normalize import as_string_list, parse_byte_quantity, parse_exchange_datetime

T = TypeVar("T")

CUSTOM_ATTRIBUTE_COUNT = 15


class GroupAttributes(BaseModel):
    """
    Distribution group attributes from ``Get-DistributionGroup``.

    Attributes:
        identity: Exchange identity of the group.
        display_name: Group display name.
        primary_address: Primary SMTP address (report key).
        created: Creation time (UTC).
        changed: Last directory modification time (UTC).
        hidden_from_address_lists: Whether the group is hidden from the GAL.
        require_sender_authentication: Whether only internal senders are accepted.
        accept_messages_only_from: Senders allowed to post.
        reject_messages_from: Senders rejected.
        moderated_by: Moderators.
        managed_by: Raw owner identifiers.
        notes: Free-form notes.
        custom_attributes: Non-empty custom attributes keyed by name.
    """

    identity: str = Field(default="", alias="Identity")
    display_name: str = Field(default="", alias="DisplayName")
    primary_address: str = Field(default="", alias="PrimarySmtpAddress")
    created: Optional[datetime] = Field(default=None, alias="WhenCreatedUTC")
    changed: Optional[datetime] = Field(default=None, alias="WhenChangedUTC")
    hidden_from_address_lists: bool = Field(default=False, alias="HiddenFromAddressListsEnabled")
    require_sender_authentication: bool = Field(
        default=True, alias="RequireSenderAuthenticationEnabled"
    )
    accept_messages_only_from: list[str] = Field(
        default_factory=list, alias="AcceptMessagesOnlyFromSendersOrMembers"
    )
    reject_messages_from: list[str] = Field(
        default_factory=list, alias="RejectMessagesFromSendersOrMembers"
    )
    moderated_by: list[str] = Field(default_factory=list, alias="ModeratedBy")
    managed_by: list[str] = Field(default_factory=list, alias="ManagedBy")
    notes: Optional[str] = Field(default=None, alias="Notes")
    custom_attributes: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _collect_custom_attributes(cls, data: Any) -> Any:
        """Fold ``CustomAttribute1..15`` into :attr:`custom_attributes`."""
        if not isinstance(data, dict) or "custom_attributes" in data:
            return data
        collected = {}
        for index in range(1, CUSTOM_ATTRIBUTE_COUNT + 1):
            key = f"CustomAttribute{index}"
            value = data.get(key)
            if value is not None and str(value).strip():
                collected[key] = str(value).strip()
        return {**data, "custom_attributes": collected}

    @field_validator("created", "changed", mode="before")
    @classmethod
    def _parse_timestamps(cls, value: Any) -> Optional[datetime]:
        return parse_exchange_datetime(value)

    @field_validator(
        "accept_messages_only_from",
        "reject_messages_from",
        "moderated_by",
        "managed_by",
        mode="before",
    )
    @classmethod
    def _parse_lists(cls, value: Any) -> list[str]:
        return as_string_list(value)

    @field_validator("identity", "display_name", "primary_address", mode="before")
    @classmethod
    def _null_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @property
    def lookup_identity(self) -> str:
        """Identity used for follow-up cmdlet calls.

        Returns:
            str: Primary address when known, otherwise the Exchange identity.
        """
        return self.primary_address or self.identity


class Recipient(BaseModel):
    """Recipient returned by ``Get-Recipient`` or ``Get-DistributionGroupMember``."""

    name: str = Field(default="", alias="Name")
    display_name: str = Field(default="", alias="DisplayName")
    primary_address: str = Field(default="", alias="PrimarySmtpAddress")
    recipient_type: str = Field(default="", alias="RecipientType")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name", "display_name", "primary_address", "recipient_type", mode="before")
    @classmethod
    def _null_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    def to_descriptor(self) -> "MemberDescriptor":
        """Convert to a report descriptor.

        Returns:
            MemberDescriptor: Descriptor with placeholders for missing values.
        """
        return MemberDescriptor(
            display_name=self.display_name or self.name or NOT_AVAILABLE,
            address=self.primary_address or NOT_AVAILABLE,
        )


class FolderStatistics(BaseModel):
    """Aggregated ``Get-MailboxFolderStatistics`` output for one recipient.

    Attributes:
        last_modified: Newest folder ``LastModifiedTime`` (None when unknown).
        item_count: Total items across folders.
        size_bytes: Total folder size in bytes.
    """

    last_modified: Optional[datetime] = None
    item_count: int = 0
    size_bytes: Optional[int] = None


class MessageTraceRow(BaseModel):
    """Row returned by ``Get-MessageTrace``."""

    received: Optional[datetime] = Field(default=None, alias="Received")
    sender_address: str = Field(default="", alias="SenderAddress")
    recipient_address: str = Field(default="", alias="RecipientAddress")
    subject: Optional[str] = Field(default=None, alias="Subject")
    status: str = Field(default="", alias="Status")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("received", mode="before")
    @classmethod
    def _parse_received(cls, value: Any) -> Optional[datetime]:
        return parse_exchange_datetime(value)

    @field_validator("sender_address", "recipient_address", "status", mode="before")
    @classmethod
    def _null_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()


class Mailbox(BaseModel):
    """Mailbox returned by ``Get-Mailbox``."""

    identity: str = Field(default="", alias="Identity")
    display_name: str = Field(default="", alias="DisplayName")
    primary_address: str = Field(default="", alias="PrimarySmtpAddress")
    user_principal_name: str = Field(default="", alias="UserPrincipalName")
    recipient_type_details: str = Field(default="", alias="RecipientTypeDetails")
    external_directory_object_id: Optional[str] = Field(
        default=None, alias="ExternalDirectoryObjectId"
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator(
        "identity",
        "display_name",
        "primary_address",
        "user_principal_name",
        "recipient_type_details",
        mode="before",
    )
    @classmethod
    def _null_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()


class MailboxStatistics(BaseModel):
    """Subset of ``Get-MailboxStatistics`` used by the converter."""

    total_item_size_bytes: Optional[int] = Field(default=None, alias="TotalItemSize")
    item_count: int = Field(default=0, alias="ItemCount")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("total_item_size_bytes", mode="before")
    @classmethod
    def _parse_size(cls, value: Any) -> Optional[int]:
        return parse_byte_quantity(value)

    @field_validator("item_count", mode="before")
    @classmethod
    def _null_to_zero(cls, value: Any) -> int:
        return 0 if value is None else value


@dataclass(frozen=True)
class FetchError:
    """A failed sub-signal fetch.

    Args:
        signal: Signal name (``members``, ``owner``, ``inbound_trace`` ...).
        message: Error description.
        status_code: HTTP status code when available.
    """

    signal: str
    message: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class SignalResult(Generic[T]):
    """Result of fetching one signal: a value or a :class:`FetchError`.

    A successful fetch may still carry ``value=None`` (e.g. no folder
    statistics exist); only :attr:`error` marks a failure.
    """

    value: Optional[T] = None
    error: Optional[FetchError] = None

    @classmethod
    def ok(cls, value: Optional[T]) -> "SignalResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: FetchError) -> "SignalResult[T]":
        return cls(error=error)

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class OwnerResolution:
    """One raw owner identifier and its directory resolution result."""

    raw_identifier: str
    result: "SignalResult[MemberDescriptor]"


@dataclass(frozen=True)
class TraceEvent:
    """Direction-neutral message trace hit.

    Args:
        timestamp: Time the message was received by the service.
        counterpart: Sender (inbound) or recipient (outbound) address.
        subject: Message subject, if any.
    """

    timestamp: Optional[datetime]
    counterpart: str = ""
    subject: Optional[str] = None


@dataclass(frozen=True)
class TraceWindow:
    """Message trace lookback window."""

    start: datetime
    end: datetime


@dataclass
class RawSignalBundle:
    """All per-group signals as fetched, each with its own success/failure."""

    folder_stats: SignalResult[FolderStatistics] = field(default_factory=SignalResult)
    members: SignalResult[list] = field(default_factory=lambda: SignalResult.ok([]))
    owners: list[OwnerResolution] = field(default_factory=list)
    inbound_trace: SignalResult[list] = field(default_factory=lambda: SignalResult.ok([]))
    outbound_trace: SignalResult[list] = field(default_factory=lambda: SignalResult.ok([]))

    def errors(self) -> list[FetchError]:
        """Return every sub-signal failure in fetch order."""
        results = [self.folder_stats, self.members]
        results.extend(owner.result for owner in self.owners)
        results.extend([self.inbound_trace, self.outbound_trace])
        return [r.error for r in results if r.error is not None]


class MemberDescriptor(BaseModel):
    """Display name + address pair for a member or owner.

    ``resolved=False`` marks a placeholder produced when a lookup failed.
    """

    display_name: str
    address: str = NOT_AVAILABLE
    resolved: bool = True

    model_config = ConfigDict(frozen=True)

    @classmethod
    def unresolved(cls, raw_identifier: str) -> "MemberDescriptor":
        return cls(
            display_name=f"{raw_identifier}{UNRESOLVED_SUFFIX}",
            address=NOT_AVAILABLE,
            resolved=False,
        )

    @classmethod
    def membership_unavailable(cls) -> "MemberDescriptor":
        return cls(display_name=MEMBERS_UNAVAILABLE, address=NOT_AVAILABLE, resolved=False)

    @property
    def label(self) -> str:
        """Single-line rendering used in both report formats."""
        if self.address == NOT_AVAILABLE:
            return self.display_name
        return f"{self.display_name} <{self.address}>"


class EventStatus(str, Enum):
    """Outcome of selecting the last message trace event."""

    FOUND = "found"
    NONE_IN_WINDOW = "none_in_window"
    UNAVAILABLE = "unavailable"


class LastEvent(BaseModel):
    """Most recent inbound or outbound message for a group."""

    status: EventStatus
    timestamp: Optional[datetime] = None
    counterpart: Optional[str] = None
    subject: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_trace(cls, event: TraceEvent) -> "LastEvent":
        return cls(
            status=EventStatus.FOUND,
            timestamp=event.timestamp,
            counterpart=event.counterpart or None,
            subject=event.subject or None,
        )

    @classmethod
    def none_in_window(cls) -> "LastEvent":
        return cls(status=EventStatus.NONE_IN_WINDOW)

    @classmethod
    def unavailable(cls) -> "LastEvent":
        return cls(status=EventStatus.UNAVAILABLE)


class ActivityRecord(BaseModel):
    """
    Fused activity record for one distribution group.

    Field order is the report column order.

    Attributes:
        display_name: Group display name.
        primary_address: Primary SMTP address (unique per run).
        member_count: Resolved member count (None when membership failed).
        members: Member descriptors.
        owners: Owner descriptors, one per raw ``ManagedBy`` entry.
        last_modified: Newest folder modification time (None when absent).
        created: Group creation time.
        changed: Directory modification time.
        last_inbound: Most recent message received by the group.
        last_outbound: Most recent message sent as the group.
        hidden_from_address_lists: GAL visibility flag.
        require_sender_authentication: Internal-senders-only flag.
        accept_messages_only_from: Joined accept list.
        reject_messages_from: Joined reject list.
        moderated_by: Joined moderator list.
        notes: Free-form notes.
        custom_attributes: Joined ``name=value`` custom attributes.
    """

    display_name: str
    primary_address: str
    member_count: Optional[int] = None
    members: tuple[MemberDescriptor, ...] = ()
    owners: tuple[MemberDescriptor, ...] = ()
    last_modified: Optional[datetime] = None
    created: Optional[datetime] = None
    changed: Optional[datetime] = None
    last_inbound: LastEvent = Field(default_factory=LastEvent.none_in_window)
    last_outbound: LastEvent = Field(default_factory=LastEvent.none_in_window)
    hidden_from_address_lists: bool = False
    require_sender_authentication: bool = True
    accept_messages_only_from: str = ""
    reject_messages_from: str = ""
    moderated_by: str = ""
    notes: Optional[str] = None
    custom_attributes: str = ""

    model_config = ConfigDict(frozen=True)

    @field_validator("primary_address")
    @classmethod
    def _require_address(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("primary_address must be non-empty")
        return value.strip()


class ScanFailure(BaseModel):
    """A group skipped because its base attributes could not be fetched."""

    identity: str
    reason: str


class ScanSummary(BaseModel):
    """
    Result of a group inactivity scan.

    Attributes:
        processed: Groups fused and classified.
        inactive: Groups classified inactive.
        skipped: Groups skipped due to errors.
        failures: Skipped groups with reasons.
        csv_path: Written CSV report.
        html_path: Written HTML report.
    """

    processed: int = 0
    inactive: int = 0
    skipped: int = 0
    failures: list[ScanFailure] = Field(default_factory=list)
    csv_path: Optional[Path] = None
    html_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.skipped == 0


class ConversionStatus(str, Enum):
    """Outcome of converting one mailbox."""

    CONVERTED = "converted"
    ALREADY_SHARED = "already_shared"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"
    FAILED = "failed"


class ConversionResult(BaseModel):
    """
    Result of converting a single mailbox to a shared mailbox.

    Attributes:
        identity: Identity as requested.
        display_name: Mailbox display name.
        previous_type: RecipientTypeDetails before conversion.
        final_type: RecipientTypeDetails after conversion.
        sign_in_disabled: Whether the account was blocked from sign-in.
        password_rotated: Whether the account password was reset.
        size_bytes: Mailbox size in bytes.
        status: Conversion outcome.
        warnings: Non-fatal issues.
        error: Error message if failed.
    """

    identity: str
    display_name: str = ""
    previous_type: str = ""
    final_type: str = ""
    sign_in_disabled: bool = False
    password_rotated: bool = False
    size_bytes: Optional[int] = None
    status: ConversionStatus = ConversionStatus.FAILED
    warnings: list[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != ConversionStatus.FAILED
