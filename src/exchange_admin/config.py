"""Application configuration and settings.

Objective:
    Provide a single source of truth for runtime configuration used across the
    application (Entra ID auth, Exchange tenant, scan policy and output
    behavior).

Responsibilities:
    - Define report placeholder constants shared by fusion and rendering.
    - Load environment-driven settings via :class:`Settings` (Pydantic
      BaseSettings).
    - Provide small convenience helpers for derived settings (e.g., parsing
      the comma-separated domain allow-list).

High-level call tree:
    - :func:`get_settings` -> returns :class:`Settings`
    - :class:`Settings`
        - :attr:`Settings.allowed_domain_list`

Operational notes:
    - ``Settings`` loads from ``.env`` by default via ``pydantic-settings``.
    - Most modules accept a ``Settings`` object explicitly to enable testing;
      the scanner and converter fall back to :func:`get_settings` when not
      provided.
"""

from typing import Optional
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Placeholders rendered instead of empty strings
NOT_AVAILABLE = "N/A"
NO_ACTIVITY = "No activity in window"
TRACE_UNAVAILABLE = "Trace unavailable"
MEMBERS_UNAVAILABLE = "Unable to retrieve members"
UNRESOLVED_SUFFIX = " (unresolved)"

# Longest message trace lookback the service retains
MAX_TRACE_WINDOW_DAYS = 90

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# Shared mailboxes above this size need an Exchange Online license
SHARED_MAILBOX_UNLICENSED_LIMIT_BYTES = 50 * 1024**3


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The settings model is intentionally flat and human-editable via `.env`.
    Most fields map directly to environment variables.

    Attributes:
        azure_client_id: Entra ID application client ID.
        azure_client_secret: Client secret for the client credentials flow.
        azure_tenant_id: Entra ID tenant ID.
        organization: Tenant primary domain (e.g. contoso.onmicrosoft.com).
        inactivity_threshold_days: Days without modification before a group
            is considered inactive.
        trace_window_days: Message trace lookback window in days.
        group_name_filter: Optional wildcard filter on group display names.
        allowed_domains: Comma-separated list of primary address domains.
        output_dir: Directory where report files are written.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Entra ID Configuration
    azure_client_id: str = Field(..., description="Entra ID application client ID")
    azure_client_secret: Optional[str] = Field(
        default=None, description="Entra ID application client secret (for client credentials flow)"
    )
    azure_tenant_id: str = Field(
        default="organizations", description="Entra ID tenant ID or domain"
    )

    use_client_credentials: bool = Field(
        default=False,
        description=(
            "Use client credentials flow instead of device code flow. "
            "Requires the Exchange.ManageAsApp application permission and an "
            "Exchange administrator role assignment for the app."
        ),
    )

    admin_account_username: Optional[str] = Field(
        default=None,
        description=(
            "Preferred admin account username to select from the MSAL token cache. "
            "If omitted, the first cached account is used."
        ),
    )

    organization: str = Field(
        default="",
        description="Tenant primary domain, used to route Exchange admin API requests",
    )

    # Scan policy
    inactivity_threshold_days: int = Field(
        default=90, ge=1, description="Days without modification before a group is inactive"
    )
    trace_window_days: int = Field(
        default=10, ge=1, le=MAX_TRACE_WINDOW_DAYS, description="Message trace lookback window in days"
    )
    group_name_filter: Optional[str] = Field(
        default=None, description="Wildcard filter on group display names (e.g. 'Sales*')"
    )
    allowed_domains: str = Field(
        default="", description="Comma-separated list of primary address domains to scan"
    )

    # Output / runtime
    output_dir: str = Field(default="reports", description="Directory for report files")
    request_timeout: int = Field(
        default=60, ge=1, description="HTTP timeout in seconds for service requests"
    )
    log_level: str = Field(
        default="INFO", description="Logging level used when --log-level is not given"
    )

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def allowed_domain_list(self) -> list[str]:
        """Parse allowed domains from comma-separated string.

        Entries are lowercased and a leading ``@`` is tolerated, so both
        ``contoso.com`` and ``@contoso.com`` match the same groups.

        Returns:
            list[str]: List of domains, empty when every domain is allowed.
        """
        if not self.allowed_domains:
            return []
        domains = []
        for domain in self.allowed_domains.split(","):
            domain = domain.strip().lower().lstrip("@")
            if domain:
                domains.append(domain)
        return domains


def get_settings() -> Settings:
    """
    Load and return application settings.

    This helper is a convenience for production code. For tests, you typically
    construct a :class:`Settings` instance directly or pass a mocked settings
    object.

    Returns:
        Settings: Application settings instance.

    Raises:
        ValidationError: If required environment variables are missing.
    """
    return Settings()
