"""User mailbox to shared mailbox conversion.

Objective:
    Convert user mailboxes to shared mailboxes and lock down the accounts
    that owned them:
    1) Validate the mailbox exists and is a user mailbox
    2) Change the mailbox type to Shared and verify it
    3) Block sign-in for the account
    4) Optionally rotate the account password
    5) Record one outcome per mailbox (also written to CSV)

High-level call tree:
    - :class:`MailboxConverter`
        - :meth:`MailboxConverter.convert_many`
            - :meth:`MailboxConverter.convert`
                - :meth:`ExchangeClient.get_mailbox`
                - :meth:`ExchangeClient.get_mailbox_statistics`
                - :meth:`ExchangeClient.set_mailbox_type`
                - :meth:`DirectoryClient.disable_sign_in`
                - :meth:`DirectoryClient.reset_password`
        - :func:`write_conversion_results`

Error handling:
    - Per-mailbox command/HTTP errors are returned as ``failed`` results so a
      batch continues.
    - Connection and authentication failures propagate and abort the batch.
"""

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

import requests

from .auth import ServiceAuthenticator
from .config import NOT_AVAILABLE, SHARED_MAILBOX_UNLICENSED_LIMIT_BYTES, Settings, get_settings
from .directory_client import DirectoryClient, generate_password
from .exchange_client import ExchangeClient, ExchangeCommandError
from .models import ConversionResult, ConversionStatus, Mailbox
from .report import csv_safe

logger = logging.getLogger(__name__)

USER_MAILBOX = "UserMailbox"
SHARED_MAILBOX = "SharedMailbox"

CONVERSION_COLUMNS = [
    "Identity",
    "DisplayName",
    "PreviousType",
    "FinalType",
    "SignInDisabled",
    "PasswordRotated",
    "SizeBytes",
    "Status",
    "Warnings",
    "Error",
]


class MailboxConverter:
    """
    Converts user mailboxes to shared mailboxes.

    Attributes:
        settings: Application settings.
        auth: Token provider.
        exchange_client: Exchange admin API client.
        directory_client: Graph directory client.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """
        Initialize converter with all components.

        Args:
            settings: Application settings (loads from env if None).
        """
        self.settings = settings or get_settings()

        self.auth = ServiceAuthenticator(self.settings)
        self.exchange_client = ExchangeClient(self.settings, self.auth)
        self.directory_client = DirectoryClient(self.settings, self.auth)

    def _lock_down_account(
        self, mailbox: Mailbox, result: ConversionResult, rotate_password: bool
    ) -> None:
        """Disable sign-in and optionally rotate the password."""
        user_id = mailbox.external_directory_object_id or mailbox.user_principal_name
        if not user_id:
            result.warnings.append("No directory account linked to mailbox")
            return

        self.directory_client.disable_sign_in(user_id)
        result.sign_in_disabled = True

        if rotate_password:
            self.directory_client.reset_password(user_id, generate_password())
            result.password_rotated = True

    def convert(
        self,
        identity: str,
        rotate_password: bool = False,
        dry_run: bool = False,
    ) -> ConversionResult:
        """
        Convert a single mailbox.

        Errors are caught and returned inside :class:`ConversionResult` so
        that a batch run can continue processing other mailboxes.

        Args:
            identity: Mailbox identity, UPN or address.
            rotate_password: Reset the account password after conversion.
            dry_run: Validate only; make no changes.

        Returns:
            ConversionResult: Outcome.
        """
        result = ConversionResult(identity=identity)

        try:
            mailbox = self.exchange_client.get_mailbox(identity)
            if mailbox is None:
                result.error = "Mailbox not found"
                return result

            result.display_name = mailbox.display_name
            result.previous_type = mailbox.recipient_type_details
            result.final_type = mailbox.recipient_type_details

            if mailbox.recipient_type_details == SHARED_MAILBOX:
                if not dry_run:
                    self._lock_down_account(mailbox, result, rotate_password)
                result.status = ConversionStatus.ALREADY_SHARED
                return result

            if mailbox.recipient_type_details != USER_MAILBOX:
                result.status = ConversionStatus.SKIPPED
                result.warnings.append(
                    f"Unsupported mailbox type: {mailbox.recipient_type_details or 'unknown'}"
                )
                return result

            statistics = self.exchange_client.get_mailbox_statistics(identity)
            if statistics is not None:
                result.size_bytes = statistics.total_item_size_bytes
            if result.size_bytes and result.size_bytes > SHARED_MAILBOX_UNLICENSED_LIMIT_BYTES:
                result.warnings.append(
                    "Mailbox exceeds 50 GB; the shared mailbox still needs a license"
                )

            if dry_run:
                result.status = ConversionStatus.DRY_RUN
                return result

            self.exchange_client.set_mailbox_type(identity, "Shared")

            converted = self.exchange_client.get_mailbox(identity)
            result.final_type = converted.recipient_type_details if converted else ""
            if result.final_type != SHARED_MAILBOX:
                result.error = f"Mailbox type is {result.final_type or 'unknown'} after conversion"
                return result

            self._lock_down_account(mailbox, result, rotate_password)
            result.status = ConversionStatus.CONVERTED
            return result

        except (ExchangeCommandError, requests.HTTPError) as e:
            logger.error(f"Error converting mailbox {identity}: {e}")
            result.status = ConversionStatus.FAILED
            result.error = str(e)
            return result

    def convert_many(
        self,
        identities: Iterable[str],
        rotate_password: bool = False,
        dry_run: bool = False,
    ) -> list[ConversionResult]:
        """Convert mailboxes sequentially.

        Args:
            identities: Mailbox identities (blank and repeated entries are ignored).
            rotate_password: Reset account passwords after conversion.
            dry_run: Validate only; make no changes.

        Returns:
            list[ConversionResult]: One result per distinct identity.
        """
        unique = []
        seen: set[str] = set()
        for identity in identities:
            identity = identity.strip()
            if identity and identity.lower() not in seen:
                seen.add(identity.lower())
                unique.append(identity)

        logger.info(f"Converting {len(unique)} mailboxes (dry_run={dry_run})")

        results = []
        try:
            for i, identity in enumerate(unique, 1):
                logger.info(f"Processing mailbox {i}/{len(unique)}: {identity}")
                result = self.convert(identity, rotate_password=rotate_password, dry_run=dry_run)
                if result.status == ConversionStatus.FAILED:
                    logger.warning(f"Conversion failed for {identity}: {result.error}")
                results.append(result)
        finally:
            self.exchange_client.close()
            self.directory_client.close()

        successful = sum(1 for r in results if r.success)
        logger.info(f"Completed: {successful} successful, {len(results) - successful} failed")
        return results


def read_identities(path: Path) -> list[str]:
    """Read mailbox identities from a CSV or plain text file.

    A CSV with an ``Identity``, ``UserPrincipalName``, ``PrimarySmtpAddress``
    or ``Email`` column is read by that column; otherwise every non-empty line
    is an identity.

    Args:
        path: Input file.

    Returns:
        list[str]: Identities in file order.
    """
    text = Path(path).read_text(encoding="utf-8-sig")
    lines = text.splitlines()
    if not lines:
        return []

    header = [h.strip().lower() for h in next(csv.reader([lines[0]]))]
    for column in ("identity", "userprincipalname", "primarysmtpaddress", "email"):
        if column in header:
            index = header.index(column)
            identities = []
            for row in csv.reader(lines[1:]):
                if len(row) > index and row[index].strip():
                    identities.append(row[index].strip())
            return identities

    return [line.strip() for line in lines if line.strip()]


def write_conversion_results(
    results: list[ConversionResult],
    output_dir: Path,
    now: Optional[datetime] = None,
) -> Path:
    """Write conversion outcomes to ``MailboxConversion_<stamp>.csv``.

    Args:
        results: Conversion outcomes.
        output_dir: Destination directory (created if missing).
        now: Reference time for the file name stamp.

    Returns:
        Path: Written file.
    """
    now = now or datetime.now(timezone.utc)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"MailboxConversion_{now.strftime('%Y%m%d_%H%M%S')}.csv"

    with path.open("w", encoding="utf-8-sig", newline="") as handle:
        writer = csv.writer(handle, quoting=csv.QUOTE_ALL)
        writer.writerow(CONVERSION_COLUMNS)
        for r in results:
            row = [
                r.identity,
                r.display_name or NOT_AVAILABLE,
                r.previous_type or NOT_AVAILABLE,
                r.final_type or NOT_AVAILABLE,
                r.sign_in_disabled,
                r.password_rotated,
                NOT_AVAILABLE if r.size_bytes is None else r.size_bytes,
                r.status.value,
                "; ".join(r.warnings) or "None",
                r.error or "None",
            ]
            writer.writerow([csv_safe(str(cell)) for cell in row])

    logger.info("Wrote conversion results: %s", path)
    return path
