"""Inactive group report assembly and rendering.

Objective:
    Accumulate classified activity records for one scan and render them as
    two artifacts:
    - a CSV table with one row per inactive group
    - an HTML narrative with a summary block, one section per inactive group
      and closing recommendations

Responsibilities:
    - Hold run state in an explicit :class:`ReportAggregate` (no module
      globals).
    - Build the narrative as a structured :class:`NarrativeDocument` (ordered
      typed sections) and serialize it once with a Jinja2 template.
    - Format placeholders consistently: ``N/A`` for missing values,
      ``No activity in window`` for absent trace events.
    - Write both artifacts to an output directory.

High-level call tree:
    - :func:`accumulate` -> :func:`src.exchange_admin.classifier.classify`
    - :func:`render_table`
    - :func:`render_narrative`
        - :func:`build_narrative`
            - :func:`_summary_section`
            - :func:`_group_section`
    - :func:`write_reports`

Operational notes:
    - Rendering is deterministic: the same aggregate, ``now`` and
      ``generated_at`` always produce identical output.
    - "Days ago" values are computed from ``now`` at render time.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel, Field

from .classifier import classify
from .config import NO_ACTIVITY, NOT_AVAILABLE, TRACE_UNAVAILABLE
from .models import ActivityRecord, EventStatus, LastEvent, MemberDescriptor, ScanFailure, TraceWindow
from .normalize import as_utc

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
REPORT_TITLE = "Inactive Distribution Groups Report"
REPORT_FILE_PREFIX = "InactiveDistributionGroups"

TABLE_COLUMNS = [
    "DisplayName",
    "PrimarySmtpAddress",
    "MemberCount",
    "Members",
    "Owners",
    "LastModified",
    "Created",
    "Changed",
    "LastReceived",
    "LastReceivedFrom",
    "LastReceivedSubject",
    "LastSent",
    "LastSentTo",
    "LastSentSubject",
    "HiddenFromAddressLists",
    "RequireSenderAuthentication",
    "AcceptMessagesOnlyFrom",
    "RejectMessagesFrom",
    "ModeratedBy",
    "Notes",
    "CustomAttributes",
]

RECOMMENDATIONS = [
    "Confirm with the listed owners whether each group is still needed before making changes.",
    "Groups with unresolved owners or no owners should be assigned an owner or scheduled for removal.",
    "Hide unused groups from the address list for a grace period before deleting them.",
    "Groups that accept external senders and show no activity are the first candidates for clean-up.",
    "Export membership before deletion so a group can be recreated if it turns out to be needed.",
    "Re-run this report after the grace period and remove groups that are still inactive.",
]


@dataclass
class ReportAggregate:
    """
    Accumulated scan state shared by both renderers.

    Attributes:
        threshold_date: Modifications before this date are stale.
        threshold_days: Inactivity threshold in days.
        trace_window: Message trace lookback window.
        records: Inactive records in scan order.
        total_scanned: Groups classified (active and inactive).
        failures: Groups skipped due to errors.
    """

    threshold_date: datetime
    threshold_days: int
    trace_window: TraceWindow
    records: list[ActivityRecord] = field(default_factory=list)
    total_scanned: int = 0
    failures: list[ScanFailure] = field(default_factory=list)
    _seen_addresses: set[str] = field(default_factory=set, init=False, repr=False)

    @property
    def inactive_count(self) -> int:
        return len(self.records)

    @property
    def skipped_count(self) -> int:
        return len(self.failures)


def accumulate(aggregate: ReportAggregate, record: ActivityRecord) -> bool:
    """Count a record and keep it when it is inactive.

    A record whose primary address was already seen in this run is ignored.

    Args:
        aggregate: Run aggregate (mutated).
        record: Fused activity record.

    Returns:
        bool: True when the record was classified inactive and kept.
    """
    key = record.primary_address.lower()
    if key in aggregate._seen_addresses:
        logger.warning("Ignoring duplicate group address: %s", record.primary_address)
        return False
    aggregate._seen_addresses.add(key)

    aggregate.total_scanned += 1
    inactive = classify(record, aggregate.threshold_date)
    if inactive:
        aggregate.records.append(record)
    return inactive


# -- formatting helpers -------------------------------------------------------


def format_timestamp(value: Optional[datetime]) -> str:
    """Render a timestamp as ``YYYY-MM-DD HH:MM:SS UTC`` or ``N/A``."""
    if value is None:
        return NOT_AVAILABLE
    return as_utc(value).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_date(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%d")


def days_ago(value: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole days elapsed since ``value`` (floor), or None when absent."""
    if value is None:
        return None
    return (as_utc(now) - as_utc(value)).days


def format_rate(inactive: int, total: int) -> str:
    """Inactive share as a percentage with one decimal, e.g. ``25.0%``."""
    if total <= 0:
        return "0.0%"
    return f"{inactive / total * 100:.1f}%"


def format_flag(value: bool) -> str:
    return "Yes" if value else "No"


def _or_placeholder(value: Optional[str], placeholder: str = NOT_AVAILABLE) -> str:
    if value is None or not str(value).strip():
        return placeholder
    return str(value)


def _descriptor_labels(descriptors: tuple[MemberDescriptor, ...]) -> list[str]:
    return [d.label for d in descriptors]


def _event_time(event: LastEvent) -> str:
    if event.status == EventStatus.UNAVAILABLE:
        return TRACE_UNAVAILABLE
    if event.status == EventStatus.NONE_IN_WINDOW:
        return NO_ACTIVITY
    return format_timestamp(event.timestamp)


def _event_columns(event: LastEvent) -> list[str]:
    return [
        _event_time(event),
        _or_placeholder(event.counterpart),
        _or_placeholder(event.subject),
    ]


def _member_count(record: ActivityRecord) -> str:
    return NOT_AVAILABLE if record.member_count is None else str(record.member_count)


# -- tabular rendering --------------------------------------------------------


# Leading characters that make spreadsheet tools evaluate a cell as a formula
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def csv_safe(value: str) -> str:
    """Prefix formula-like cells with an apostrophe so they open as text."""
    if value.startswith(_FORMULA_PREFIXES):
        return "'" + value
    return value


def table_row(record: ActivityRecord) -> list[str]:
    """Render one record as CSV cells in :data:`TABLE_COLUMNS` order."""
    return [
        record.display_name,
        record.primary_address,
        _member_count(record),
        "\n".join(_descriptor_labels(record.members)) or "None",
        "\n".join(_descriptor_labels(record.owners)) or "None",
        format_timestamp(record.last_modified),
        format_timestamp(record.created),
        format_timestamp(record.changed),
        *_event_columns(record.last_inbound),
        *_event_columns(record.last_outbound),
        format_flag(record.hidden_from_address_lists),
        format_flag(record.require_sender_authentication),
        _or_placeholder(record.accept_messages_only_from, "None"),
        _or_placeholder(record.reject_messages_from, "None"),
        _or_placeholder(record.moderated_by, "None"),
        _or_placeholder(record.notes),
        _or_placeholder(record.custom_attributes),
    ]


def render_table(aggregate: ReportAggregate) -> str:
    """Render inactive records as CSV text.

    Every cell is quoted so embedded newlines (member lists) and commas
    survive a round trip through spreadsheet tools. Cells that start like a
    formula (subjects and names chosen by outside senders) are prefixed with
    an apostrophe.

    Args:
        aggregate: Run aggregate.

    Returns:
        str: CSV document with a header row.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL)
    writer.writerow(TABLE_COLUMNS)
    for record in aggregate.records:
        writer.writerow([csv_safe(cell) for cell in table_row(record)])
    return buffer.getvalue()


# -- narrative document -------------------------------------------------------


class SummarySection(BaseModel):
    """Run-level statistics block."""

    kind: Literal["summary"] = "summary"
    total_scanned: int
    inactive_count: int
    skipped_count: int
    inactive_rate: str
    threshold_days: int
    threshold_date: str
    trace_window: str


class TimestampEntry(BaseModel):
    label: str
    value: str
    days_ago: Optional[int] = None


class EventEntry(BaseModel):
    label: str
    status: EventStatus
    time: str
    days_ago: Optional[int] = None
    counterpart_label: str
    counterpart: str
    subject: str


class AttributeEntry(BaseModel):
    label: str
    value: str


class GroupSection(BaseModel):
    """Self-contained description of one inactive group."""

    kind: Literal["group"] = "group"
    display_name: str
    primary_address: str
    timestamps: list[TimestampEntry]
    member_count: str
    members: list[str]
    owners: list[str]
    email_activity: list[EventEntry]
    attributes: list[AttributeEntry]


class RecommendationsSection(BaseModel):
    """Static closing guidance."""

    kind: Literal["recommendations"] = "recommendations"
    entries: list[str]


Section = Annotated[
    Union[SummarySection, GroupSection, RecommendationsSection],
    Field(discriminator="kind"),
]


class NarrativeDocument(BaseModel):
    """Ordered, typed sections of the narrative report."""

    title: str
    generated_at: str
    sections: list[Section]


def _summary_section(aggregate: ReportAggregate) -> SummarySection:
    window = aggregate.trace_window
    return SummarySection(
        total_scanned=aggregate.total_scanned,
        inactive_count=aggregate.inactive_count,
        skipped_count=aggregate.skipped_count,
        inactive_rate=format_rate(aggregate.inactive_count, aggregate.total_scanned),
        threshold_days=aggregate.threshold_days,
        threshold_date=format_date(aggregate.threshold_date),
        trace_window=f"{format_date(window.start)} to {format_date(window.end)}",
    )


def _timestamp_entry(label: str, value: Optional[datetime], now: datetime) -> TimestampEntry:
    return TimestampEntry(label=label, value=format_timestamp(value), days_ago=days_ago(value, now))


def _event_entry(label: str, counterpart_label: str, event: LastEvent, now: datetime) -> EventEntry:
    timestamp = event.timestamp if event.status == EventStatus.FOUND else None
    return EventEntry(
        label=label,
        status=event.status,
        time=_event_time(event),
        days_ago=days_ago(timestamp, now),
        counterpart_label=counterpart_label,
        counterpart=_or_placeholder(event.counterpart),
        subject=_or_placeholder(event.subject),
    )


def _group_section(record: ActivityRecord, now: datetime) -> GroupSection:
    return GroupSection(
        display_name=record.display_name,
        primary_address=record.primary_address,
        timestamps=[
            _timestamp_entry("Last modified", record.last_modified, now),
            _timestamp_entry("Created", record.created, now),
            _timestamp_entry("Changed", record.changed, now),
        ],
        member_count=_member_count(record),
        members=_descriptor_labels(record.members),
        owners=_descriptor_labels(record.owners),
        email_activity=[
            _event_entry("Last received", "From", record.last_inbound, now),
            _event_entry("Last sent", "To", record.last_outbound, now),
        ],
        attributes=[
            AttributeEntry(label="Hidden from address lists", value=format_flag(record.hidden_from_address_lists)),
            AttributeEntry(
                label="Require sender authentication",
                value=format_flag(record.require_sender_authentication),
            ),
            AttributeEntry(
                label="Accept messages only from",
                value=_or_placeholder(record.accept_messages_only_from, "None"),
            ),
            AttributeEntry(
                label="Reject messages from",
                value=_or_placeholder(record.reject_messages_from, "None"),
            ),
            AttributeEntry(label="Moderated by", value=_or_placeholder(record.moderated_by, "None")),
            AttributeEntry(label="Notes", value=_or_placeholder(record.notes)),
            AttributeEntry(label="Custom attributes", value=_or_placeholder(record.custom_attributes)),
        ],
    )


def build_narrative(
    aggregate: ReportAggregate,
    now: datetime,
    generated_at: Optional[datetime] = None,
) -> NarrativeDocument:
    """Build the structured narrative document.

    Args:
        aggregate: Run aggregate.
        now: Reference time for "days ago" values.
        generated_at: Timestamp shown in the header (defaults to ``now``).

    Returns:
        NarrativeDocument: Summary, one section per inactive group, recommendations.
    """
    sections: list[Section] = [_summary_section(aggregate)]
    sections.extend(_group_section(record, now) for record in aggregate.records)
    sections.append(RecommendationsSection(entries=list(RECOMMENDATIONS)))
    return NarrativeDocument(
        title=REPORT_TITLE,
        generated_at=format_timestamp(generated_at or now),
        sections=sections,
    )


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def serialize_narrative(document: NarrativeDocument) -> str:
    """Serialize a narrative document to HTML."""
    template = _environment().get_template("report.html")
    return template.render(document=document)


def render_narrative(
    aggregate: ReportAggregate,
    now: datetime,
    generated_at: Optional[datetime] = None,
) -> str:
    """Render the HTML narrative report.

    Args:
        aggregate: Run aggregate.
        now: Reference time for "days ago" values.
        generated_at: Timestamp shown in the header (defaults to ``now``).

    Returns:
        str: Self-contained HTML document.
    """
    return serialize_narrative(build_narrative(aggregate, now, generated_at))


def write_reports(
    aggregate: ReportAggregate,
    output_dir: Path,
    now: datetime,
) -> tuple[Path, Path]:
    """Write the CSV and HTML reports.

    File names carry a ``YYYYMMDD_HHMMSS`` stamp derived from ``now``. The
    CSV is written with a UTF-8 BOM so spreadsheet tools detect the encoding.

    Args:
        aggregate: Run aggregate.
        output_dir: Destination directory (created if missing).
        now: Reference time.

    Returns:
        tuple[Path, Path]: (csv_path, html_path).
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    stamp = as_utc(now).strftime("%Y%m%d_%H%M%S")

    csv_path = output_dir / f"{REPORT_FILE_PREFIX}_{stamp}.csv"
    html_path = output_dir / f"{REPORT_FILE_PREFIX}_{stamp}.html"

    csv_path.write_text(render_table(aggregate), encoding="utf-8-sig", newline="")
    html_path.write_text(render_narrative(aggregate, now), encoding="utf-8")

    logger.info("Wrote CSV report: %s", csv_path)
    logger.info("Wrote HTML report: %s", html_path)
    return csv_path, html_path
