"""Exchange Online administration toolkit.

Objective:
    Provide a Python implementation of two administrative workflows against
    Exchange Online and Microsoft Entra ID:
    - Scan distribution groups for inactivity and render CSV/HTML reports.
    - Convert user mailboxes to shared mailboxes (and lock down sign-in).

Key modules:
    - :mod:`src.exchange_admin.auth`:
        MSAL authentication (client credentials or device code, token cache).
    - :mod:`src.exchange_admin.exchange_client`:
        Exchange admin API wrapper (cmdlets over REST).
    - :mod:`src.exchange_admin.directory_client`:
        Microsoft Graph wrapper for user sign-in and password operations.
    - :mod:`src.exchange_admin.fetchers`:
        Per-group signal fetching with per-signal failure capture.
    - :mod:`src.exchange_admin.fusion` / :mod:`src.exchange_admin.classifier`:
        Signal fusion into activity records and the inactivity policy.
    - :mod:`src.exchange_admin.report`:
        Report aggregation and CSV/HTML rendering.
    - :mod:`src.exchange_admin.scanner` / :mod:`src.exchange_admin.converter`:
        Workflow coordination.
    - :mod:`src.exchange_admin.cli`:
        User-facing entrypoint.
"""

__version__ = "0.1.0"
