"""Exchange Online admin API client.

Objective:
    Provide a thin wrapper around the Exchange Online admin API
    ``InvokeCommand`` endpoint, which executes Exchange cmdlets over REST.
    This module centralizes request construction, authentication headers,
    paging, error mapping, and Pydantic validation of cmdlet results.

Responsibilities:
    - Issue authenticated HTTP requests (via :class:`requests`).
    - Read distribution groups, members, recipients, folder statistics and
      message trace rows.
    - Read and convert mailboxes (``Get-Mailbox`` / ``Set-Mailbox -Type``).

High-level call tree:
    - Public API:
        - :meth:`ExchangeClient.invoke_cmdlet`
        - :meth:`ExchangeClient.get_distribution_groups` -> :class:`GroupAttributes`
        - :meth:`ExchangeClient.get_distribution_group`
        - :meth:`ExchangeClient.get_distribution_group_members` -> :class:`Recipient`
        - :meth:`ExchangeClient.get_recipient`
        - :meth:`ExchangeClient.get_folder_statistics` -> :class:`FolderStatistics`
        - :meth:`ExchangeClient.get_message_trace` -> :class:`MessageTraceRow`
        - :meth:`ExchangeClient.get_mailbox` / :meth:`ExchangeClient.get_mailbox_statistics`
        - :meth:`ExchangeClient.set_mailbox_type`
    - Internal helpers:
        - :meth:`ExchangeClient._make_request` (auth + error handling)

Error handling:
    - Non-2xx responses are logged and raised as :class:`ExchangeCommandError`.
    - Network failures (:class:`requests.ConnectionError`,
      :class:`requests.Timeout`) propagate unchanged; callers treat them as
      fatal for the run.
"""

import logging
from datetime import datetime
from typing import Any, Optional

import requests

from .auth import EXCHANGE_RESOURCE, ServiceAuthenticator
from .config import Settings
from .models import (
    FolderStatistics,
    GroupAttributes,
    Mailbox,
    MailboxStatistics,
    MessageTraceRow,
    Recipient,
)
from .normalize import as_utc, parse_byte_quantity, parse_exchange_datetime

logger = logging.getLogger(__name__)

# Well-known system mailbox used to route admin API calls to the tenant
_ANCHOR_MAILBOX = "SystemMailbox{bb558c35-97f1-4cb9-8ff7-d53741dc928c}"


class ExchangeCommandError(RuntimeError):
    """Raised when a cmdlet fails or returns an unexpected result.

    Args:
        cmdlet: Cmdlet name.
        message: Error description.
        status_code: HTTP status code when available.
    """

    def __init__(self, cmdlet: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"{cmdlet} failed: {message}")
        self.cmdlet = cmdlet
        self.message = message
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        """Whether the error means the target object does not exist."""
        if self.status_code == 404:
            return True
        text = self.message.lower()
        return "couldn't be found" in text or "could not be found" in text


def _format_trace_date(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


class ExchangeClient:
    """
    Client for running Exchange cmdlets through the admin REST API.

    Attributes:
        settings: Application settings.
        auth: Token provider.
    """

    ADMIN_API_BASE_URL = "https://outlook.office365.com/adminapi/beta"

    def __init__(self, settings: Settings, auth: ServiceAuthenticator) -> None:
        """
        Initialize Exchange client.

        Args:
            settings: Application settings.
            auth: Token provider.
        """
        self.settings = settings
        self.auth = auth
        self._session = requests.Session()

    @property
    def invoke_url(self) -> str:
        tenant = self.settings.organization or self.settings.azure_tenant_id
        return f"{self.ADMIN_API_BASE_URL}/{tenant}/InvokeCommand"

    def _make_request(self, url: str, json_data: dict) -> dict:
        """Make an authenticated request to the admin API.

        This helper:
        - Adds auth and routing headers.
        - Applies the configured timeout.
        - Raises for non-2xx responses.
        - Returns decoded JSON or ``{}`` for 204 responses.

        Args:
            url: Absolute request URL (invoke URL or a nextLink).
            json_data: JSON body.

        Returns:
            dict: Response JSON data.

        Raises:
            requests.HTTPError: If request fails.
        """
        headers = self.auth.get_auth_headers(EXCHANGE_RESOURCE)
        if self.settings.organization:
            headers["X-AnchorMailbox"] = f"UPN:{_ANCHOR_MAILBOX}@{self.settings.organization}"

        response = self._session.post(
            url,
            headers=headers,
            json=json_data,
            timeout=self.settings.request_timeout,
        )

        if not response.ok:
            logger.debug(
                "Admin API error: %s - %s", response.status_code, response.text
            )
            response.raise_for_status()

        if response.status_code == 204:
            return {}

        return response.json()

    def invoke_cmdlet(self, cmdlet: str, parameters: Optional[dict[str, Any]] = None) -> list[dict]:
        """Run a cmdlet and return every result object across pages.

        Args:
            cmdlet: Cmdlet name, e.g. ``Get-DistributionGroup``.
            parameters: Cmdlet parameters.

        Returns:
            list[dict]: Raw result objects.

        Raises:
            ExchangeCommandError: If the cmdlet fails.
        """
        body = {"CmdletInput": {"CmdletName": cmdlet, "Parameters": parameters or {}}}
        url: Optional[str] = self.invoke_url
        items: list[dict] = []

        while url:
            try:
                response = self._make_request(url, body)
            except requests.HTTPError as e:
                status_code = getattr(getattr(e, "response", None), "status_code", None)
                raise ExchangeCommandError(cmdlet, _error_message(e), status_code) from e

            items.extend(response.get("value", []))
            url = response.get("@odata.nextLink")

        logger.debug("%s returned %s object(s)", cmdlet, len(items))
        return items

    def get_distribution_groups(self) -> list[GroupAttributes]:
        """List every distribution group in the tenant.

        Objects that fail validation are logged and skipped.

        Returns:
            list[GroupAttributes]: Groups in service order.
        """
        raw_groups = self.invoke_cmdlet("Get-DistributionGroup", {"ResultSize": "Unlimited"})

        groups = []
        for item in raw_groups:
            try:
                groups.append(GroupAttributes.model_validate(item))
            except ValueError as e:
                logger.warning(f"Failed to parse distribution group: {e}")
                continue

        logger.debug(f"Fetched {len(groups)} distribution groups")
        return groups

    def get_distribution_group(self, identity: str) -> GroupAttributes:
        """Fetch one distribution group's attributes.

        Args:
            identity: Group identity or address.

        Returns:
            GroupAttributes: Group attributes.

        Raises:
            ExchangeCommandError: If the group cannot be read.
        """
        items = self.invoke_cmdlet("Get-DistributionGroup", {"Identity": identity})
        if not items:
            raise ExchangeCommandError("Get-DistributionGroup", f"no group returned for {identity!r}")
        return GroupAttributes.model_validate(items[0])

    def get_distribution_group_members(self, identity: str) -> list[Recipient]:
        """List the direct members of a distribution group.

        Args:
            identity: Group identity or address.

        Returns:
            list[Recipient]: Members.
        """
        items = self.invoke_cmdlet(
            "Get-DistributionGroupMember",
            {"Identity": identity, "ResultSize": "Unlimited"},
        )
        return [Recipient.model_validate(item) for item in items]

    def get_recipient(self, identity: str) -> Recipient:
        """Resolve a recipient identifier (name, alias, DN or address).

        Args:
            identity: Raw identifier.

        Returns:
            Recipient: Resolved recipient.

        Raises:
            ExchangeCommandError: If the recipient cannot be resolved.
        """
        items = self.invoke_cmdlet("Get-Recipient", {"Identity": identity})
        if not items:
            raise ExchangeCommandError("Get-Recipient", f"no recipient returned for {identity!r}", 404)
        return Recipient.model_validate(items[0])

    def get_folder_statistics(self, identity: str) -> Optional[FolderStatistics]:
        """Aggregate folder statistics for a recipient.

        The newest ``LastModifiedTime`` across all folders is reported as the
        recipient's last modification.

        Args:
            identity: Recipient identity or address.

        Returns:
            Optional[FolderStatistics]: Aggregate, or None when no folders exist.
        """
        rows = self.invoke_cmdlet("Get-MailboxFolderStatistics", {"Identity": identity})
        if not rows:
            return None

        last_modified: Optional[datetime] = None
        item_count = 0
        size_bytes: Optional[int] = None
        for row in rows:
            modified = parse_exchange_datetime(row.get("LastModifiedTime"))
            if modified is not None and (last_modified is None or modified > last_modified):
                last_modified = modified
            item_count += int(row.get("ItemsInFolder") or 0)
            folder_size = parse_byte_quantity(row.get("FolderSize"))
            if folder_size is not None:
                size_bytes = (size_bytes or 0) + folder_size

        return FolderStatistics(
            last_modified=last_modified,
            item_count=item_count,
            size_bytes=size_bytes,
        )

    def get_message_trace(
        self,
        start: datetime,
        end: datetime,
        sender: Optional[str] = None,
        recipient: Optional[str] = None,
        page_size: int = 1000,
    ) -> list[MessageTraceRow]:
        """Query message trace for a sender or recipient within a window.

        Args:
            start: Window start.
            end: Window end.
            sender: Sender address filter.
            recipient: Recipient address filter.
            page_size: Rows per page.

        Returns:
            list[MessageTraceRow]: Trace rows in service order.
        """
        parameters: dict[str, Any] = {
            "StartDate": _format_trace_date(start),
            "EndDate": _format_trace_date(end),
            "PageSize": page_size,
        }
        if sender:
            parameters["SenderAddress"] = sender
        if recipient:
            parameters["RecipientAddress"] = recipient

        items = self.invoke_cmdlet("Get-MessageTrace", parameters)
        return [MessageTraceRow.model_validate(item) for item in items]

    def get_mailbox(self, identity: str) -> Optional[Mailbox]:
        """Fetch a mailbox.

        Args:
            identity: Mailbox identity, UPN or address.

        Returns:
            Optional[Mailbox]: Mailbox, or None if it does not exist.
        """
        try:
            items = self.invoke_cmdlet("Get-Mailbox", {"Identity": identity})
        except ExchangeCommandError as e:
            if e.is_not_found:
                logger.debug("Mailbox not found: %s", identity)
                return None
            raise
        if not items:
            return None
        return Mailbox.model_validate(items[0])

    def get_mailbox_statistics(self, identity: str) -> Optional[MailboxStatistics]:
        """Fetch mailbox size statistics.

        Args:
            identity: Mailbox identity, UPN or address.

        Returns:
            Optional[MailboxStatistics]: Statistics, or None if unavailable.
        """
        items = self.invoke_cmdlet("Get-MailboxStatistics", {"Identity": identity})
        if not items:
            return None
        return MailboxStatistics.model_validate(items[0])

    def set_mailbox_type(self, identity: str, mailbox_type: str = "Shared") -> None:
        """Change a mailbox's type (``Regular``, ``Shared``, ``Room``, ``Equipment``).

        Args:
            identity: Mailbox identity, UPN or address.
            mailbox_type: Target type.

        Raises:
            ExchangeCommandError: If the change is rejected.
        """
        self.invoke_cmdlet("Set-Mailbox", {"Identity": identity, "Type": mailbox_type})
        logger.debug("Set mailbox %s type to %s", identity, mailbox_type)

    def close(self) -> None:
        """Release pooled HTTP connections."""
        self._session.close()


def _error_message(error: requests.HTTPError) -> str:
    """Extract the most useful message from an admin API error response."""
    response = getattr(error, "response", None)
    if response is None:
        return str(error)
    try:
        payload = response.json()
    except ValueError:
        return response.text or str(error)
    if isinstance(payload, dict):
        detail = payload.get("error")
        if isinstance(detail, dict) and detail.get("message"):
            return str(detail["message"])
    return str(payload)
