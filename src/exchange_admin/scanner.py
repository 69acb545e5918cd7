"""Distribution group inactivity scan orchestrator.

Objective:
    Coordinate the end-to-end scan workflow:
    1) Authenticate to the Exchange admin API
    2) List distribution groups and apply name/domain filters
    3) For each group: fetch attributes, fetch signals, fuse, classify
    4) Accumulate inactive groups into a report aggregate
    5) Write the CSV and HTML reports
    6) Return a summary suitable for the CLI

Responsibilities:
    - Compose the core components (auth, Exchange client, signal fetcher).
    - Provide an imperative API (:meth:`GroupInactivityScanner.run`) that can
      be called from the CLI or other scripts.

High-level call tree:
    - :class:`GroupInactivityScanner`
        - :meth:`GroupInactivityScanner.run`
            - :meth:`ExchangeClient.get_distribution_groups`
            - :meth:`GroupInactivityScanner.select_groups`
            - for each group:
                - :meth:`GroupInactivityScanner.scan_group`
                    - :meth:`SignalFetcher.fetch_attributes`
                    - :meth:`SignalFetcher.fetch_signals`
                    - :func:`src.exchange_admin.fusion.fuse`
                    - :func:`src.exchange_admin.report.accumulate`
            - :func:`src.exchange_admin.report.write_reports`

Error handling:
    - A sub-signal failure is logged as a warning; the group is still
      classified.
    - A group whose attributes cannot be read is skipped and recorded.
    - Connection and authentication failures abort the run.

Operational notes:
    - Groups are processed sequentially; the scanner does not persist state
      between runs.
"""

import fnmatch
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import requests

from .auth import ServiceAuthenticator
from .classifier import inactivity_threshold
from .config import MAX_TRACE_WINDOW_DAYS, Settings, get_settings
from .exchange_client import ExchangeClient, ExchangeCommandError
from .fetchers import SignalFetcher
from .fusion import fuse
from .models import GroupAttributes, ScanFailure, ScanSummary, TraceWindow
from .report import ReportAggregate, accumulate, write_reports

logger = logging.getLogger(__name__)


class GroupInactivityScanner:
    """
    Orchestrates the distribution group inactivity scan.

    This class is intentionally "glue" code: it connects the Exchange client,
    signal fetcher, fusion, classifier and report assembler without embedding
    policy.

    Attributes:
        settings: Application settings.
        auth: Token provider.
        exchange_client: Exchange admin API client.
        fetcher: Signal fetcher.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """
        Initialize scanner with all components.

        Args:
            settings: Application settings (loads from env if None).
        """
        self.settings = settings or get_settings()

        self.auth = ServiceAuthenticator(self.settings)
        self.exchange_client = ExchangeClient(self.settings, self.auth)
        self.fetcher = SignalFetcher(self.exchange_client)

    def select_groups(
        self,
        groups: list[GroupAttributes],
        name_filter: Optional[str] = None,
        allowed_domains: Optional[list[str]] = None,
    ) -> list[GroupAttributes]:
        """Apply filters and drop groups that cannot be keyed.

        Filtering behavior:
            - ``name_filter`` is a case-insensitive shell wildcard matched
              against the display name (``Sales*``, ``*-old``).
            - ``allowed_domains`` keeps groups whose primary address domain
              is in the list.
            - Groups without a primary address, and repeated addresses, are
              dropped with a warning.

        Args:
            groups: Groups in service order.
            name_filter: Display name wildcard.
            allowed_domains: Lowercased domains.

        Returns:
            list[GroupAttributes]: Selected groups in service order.
        """
        selected = []
        seen: set[str] = set()
        pattern = name_filter.lower() if name_filter else None
        domains = set(allowed_domains or [])

        for group in groups:
            address = group.primary_address.lower()
            if not address:
                logger.warning("Skipping group without primary address: %s", group.identity)
                continue
            if pattern and not fnmatch.fnmatchcase(group.display_name.lower(), pattern):
                continue
            if domains and address.rpartition("@")[2] not in domains:
                continue
            if address in seen:
                logger.warning("Skipping duplicate group address: %s", group.primary_address)
                continue
            seen.add(address)
            selected.append(group)

        return selected

    def scan_group(
        self,
        group: GroupAttributes,
        aggregate: ReportAggregate,
        window: TraceWindow,
    ) -> None:
        """Fetch, fuse, classify and accumulate one group.

        Args:
            group: Group as listed.
            aggregate: Run aggregate (mutated).
            window: Message trace window.
        """
        identity = group.lookup_identity
        try:
            attributes = self.fetcher.fetch_attributes(identity)
            if not attributes.primary_address:
                raise ValueError("group has no primary address")
        except (ExchangeCommandError, requests.HTTPError, ValueError) as e:
            logger.warning("Skipping group %s: could not read attributes (%s)", identity, e)
            aggregate.failures.append(ScanFailure(identity=identity, reason=str(e)))
            return

        bundle = self.fetcher.fetch_signals(attributes, window)
        for error in bundle.errors():
            logger.warning(
                "Group %s: %s unavailable (%s)", attributes.primary_address, error.signal, error.message
            )

        record = fuse(attributes, bundle)
        if accumulate(aggregate, record):
            logger.debug("Group %s classified inactive", record.primary_address)

    def run(
        self,
        inactive_days: Optional[int] = None,
        trace_days: Optional[int] = None,
        name_filter: Optional[str] = None,
        allowed_domains: Optional[list[str]] = None,
        output_dir: Optional[Path] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ScanSummary:
        """Run the inactivity scan and write reports.

        Unset arguments fall back to settings.

        Args:
            inactive_days: Inactivity threshold in days.
            trace_days: Message trace lookback in days.
            name_filter: Display name wildcard.
            allowed_domains: Primary address domains to include.
            output_dir: Report directory.
            limit: Maximum number of groups to scan.
            now: Reference time (defaults to current UTC time).

        Returns:
            ScanSummary: Counts, skipped groups and report paths.

        Raises:
            ValueError: If a day count or the limit is out of range.
            requests.ConnectionError: If the service cannot be reached.
            RuntimeError: If authentication fails.
        """
        now = now or datetime.now(timezone.utc)
        if inactive_days is None:
            inactive_days = self.settings.inactivity_threshold_days
        if trace_days is None:
            trace_days = self.settings.trace_window_days
        if inactive_days < 1:
            raise ValueError(f"inactive_days must be at least 1, got {inactive_days}")
        if not 1 <= trace_days <= MAX_TRACE_WINDOW_DAYS:
            raise ValueError(
                f"trace_days must be between 1 and {MAX_TRACE_WINDOW_DAYS}, got {trace_days}"
            )
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        name_filter = name_filter or self.settings.group_name_filter
        if allowed_domains is None:
            allowed_domains = self.settings.allowed_domain_list
        output_dir = Path(output_dir or self.settings.output_dir)

        window = TraceWindow(start=now - timedelta(days=trace_days), end=now)
        aggregate = ReportAggregate(
            threshold_date=inactivity_threshold(now, inactive_days),
            threshold_days=inactive_days,
            trace_window=window,
        )

        logger.info(
            "Starting inactivity scan (threshold=%s days, trace window=%s days)",
            inactive_days,
            trace_days,
        )

        try:
            groups = self.select_groups(
                self.exchange_client.get_distribution_groups(),
                name_filter=name_filter,
                allowed_domains=allowed_domains,
            )
            if limit:
                groups = groups[:limit]

            logger.info(f"Scanning {len(groups)} distribution groups")

            for i, group in enumerate(groups, 1):
                logger.info(f"Processing group {i}/{len(groups)}: {group.display_name}")
                self.scan_group(group, aggregate, window)
        except (requests.ConnectionError, requests.Timeout):
            logger.error("Lost connection to Exchange Online; aborting scan")
            raise
        finally:
            self.exchange_client.close()

        csv_path, html_path = write_reports(aggregate, output_dir, now)

        logger.info(
            f"Completed: {aggregate.total_scanned} processed, "
            f"{aggregate.inactive_count} inactive, {aggregate.skipped_count} skipped"
        )

        return ScanSummary(
            processed=aggregate.total_scanned,
            inactive=aggregate.inactive_count,
            skipped=aggregate.skipped_count,
            failures=list(aggregate.failures),
            csv_path=csv_path,
            html_path=html_path,
        )


def run_scan(**kwargs) -> ScanSummary:
    """Convenience wrapper to run the scan with settings from the environment.

    Args:
        **kwargs: Forwarded to :meth:`GroupInactivityScanner.run`.

    Returns:
        ScanSummary: Scan summary.
    """
    scanner = GroupInactivityScanner()
    return scanner.run(**kwargs)
