"""Microsoft Entra ID authentication.

Objective:
    Provide a small, reusable authentication layer for the two services this
    toolkit talks to: Microsoft Graph (user sign-in and password operations)
    and the Exchange Online admin API (cmdlets). This module acquires and
    caches OAuth2 access tokens that can be attached to HTTP requests.

Responsibilities:
    - Manage MSAL ``PublicClientApplication`` or ``ConfidentialClientApplication`` lifecycle.
    - Persist and reload the MSAL token cache to/from disk.
    - Perform interactive device-code authentication when no cached token is
      available (delegated permissions).
    - Perform client credentials authentication for unattended scenarios
      (application permissions).
    - Provide ready-to-use HTTP headers per resource.

High-level call tree:
    - :class:`ServiceAuthenticator`
        - :meth:`ServiceAuthenticator.get_auth_headers`
            - :meth:`ServiceAuthenticator.get_access_token`
                - :meth:`ServiceAuthenticator._get_token_client_credentials`
                - :meth:`ServiceAuthenticator._get_token_device_code`
                - :meth:`ServiceAuthenticator._get_app`
                    - :meth:`ServiceAuthenticator._load_token_cache`
                - :meth:`ServiceAuthenticator._save_token_cache`

Operational notes:
    - Client credentials flow is used when USE_CLIENT_CREDENTIALS is set.
      The app needs ``Exchange.ManageAsApp`` and ``User.ReadWrite.All``
      application permissions plus an Exchange administrator role.
    - Device-code flow requires user interaction. Tokens for the second
      resource are obtained silently with the cached refresh token.
    - Token cache location is stored in the user's home directory.
"""

import logging
from pathlib import Path
from typing import Optional

import msal

from .config import Settings

logger = logging.getLogger(__name__)

# Token cache file location
TOKEN_CACHE_FILE = Path.home() / ".exchange_admin_token_cache.json"

GRAPH_RESOURCE = "https://graph.microsoft.com"
EXCHANGE_RESOURCE = "https://outlook.office365.com"


class ServiceAuthenticator:
    """
    Handles Entra ID authentication using MSAL.

    Supports two authentication modes:
    1. Client credentials flow (application permissions) - for unattended scenarios
    2. Device code flow (delegated permissions) - for interactive scenarios

    Attributes:
        settings: Application settings containing Entra ID credentials.
        _app: MSAL public or confidential client application instance.
    """

    # Delegated scopes per resource
    DELEGATED_SCOPES = {
        GRAPH_RESOURCE: [
            f"{GRAPH_RESOURCE}/User.ReadWrite.All",
            f"{GRAPH_RESOURCE}/Directory.AccessAsUser.All",
        ],
        EXCHANGE_RESOURCE: [
            f"{EXCHANGE_RESOURCE}/Exchange.Manage",
        ],
    }

    def __init__(self, settings: Settings) -> None:
        """
        Initialize the authenticator with settings.

        Args:
            settings: Application settings with Entra ID credentials.
        """
        self.settings = settings
        self._app: Optional[msal.PublicClientApplication | msal.ConfidentialClientApplication] = None
        self._use_client_credentials = bool(settings.use_client_credentials)

    def _load_token_cache(self) -> msal.SerializableTokenCache:
        """
        Load token cache from file.

        If the file cannot be read or is invalid, the authenticator falls back
        to an empty cache.

        Returns:
            msal.SerializableTokenCache: Token cache instance.
        """
        cache = msal.SerializableTokenCache()
        if TOKEN_CACHE_FILE.exists():
            try:
                cache.deserialize(TOKEN_CACHE_FILE.read_text())
                logger.debug("Loaded token cache from file")
            except Exception as e:
                logger.warning(f"Failed to load token cache: {e}")
        else:
            logger.debug("No token cache file found; starting with empty cache")
        return cache

    def _save_token_cache(self, cache: msal.SerializableTokenCache) -> None:
        """
        Save token cache to file.

        MSAL tracks whether the cache has changed. This function only writes to
        disk when a new token has been acquired or refreshed.

        Args:
            cache: Token cache to save.
        """
        if cache.has_state_changed:
            try:
                TOKEN_CACHE_FILE.write_text(cache.serialize())
                logger.debug("Saved token cache to file")
            except OSError as e:
                logger.warning(f"Failed to save token cache: {e}")

    def _get_app(self) -> msal.PublicClientApplication | msal.ConfidentialClientApplication:
        """
        Get or create MSAL client application.

        Returns:
            msal.PublicClientApplication | msal.ConfidentialClientApplication: MSAL app instance.

        Raises:
            RuntimeError: If client credentials are requested without a secret.
        """
        if self._app is None:
            authority = f"https://login.microsoftonline.com/{self.settings.azure_tenant_id}"

            if self._use_client_credentials:
                if not self.settings.azure_client_secret:
                    raise RuntimeError(
                        "use_client_credentials=true requires AZURE_CLIENT_SECRET to be set"
                    )
                self._app = msal.ConfidentialClientApplication(
                    client_id=self.settings.azure_client_id,
                    client_credential=self.settings.azure_client_secret,
                    authority=authority,
                )
                logger.debug("Created MSAL confidential client application (client credentials flow)")
            else:
                cache = self._load_token_cache()
                self._app = msal.PublicClientApplication(
                    client_id=self.settings.azure_client_id,
                    authority=authority,
                    token_cache=cache,
                )
                logger.debug("Created MSAL public client application (device code flow)")
        return self._app

    def _select_account(self, accounts: list[dict]) -> Optional[dict]:
        """Select a cached MSAL account.

        When ``settings.admin_account_username`` is set, this function selects
        the matching account by username (case-insensitive). Otherwise it
        returns the first cached account.

        Args:
            accounts: List of cached MSAL accounts.

        Returns:
            Optional[dict]: Selected account or None when no accounts exist.

        Raises:
            ValueError: If a preferred username is configured but not found.
        """
        if not accounts:
            return None

        preferred = (self.settings.admin_account_username or "").strip()
        if not preferred:
            return accounts[0]

        preferred_lower = preferred.lower()
        for account in accounts:
            username = str(account.get("username", "")).strip().lower()
            if username and username == preferred_lower:
                return account

        available = [a.get("username") for a in accounts if a.get("username")]
        raise ValueError(
            "Configured ADMIN_ACCOUNT_USERNAME was not found in token cache. "
            f"preferred={preferred!r} available={available!r}"
        )

    def _get_token_client_credentials(self, resource: str) -> str:
        """
        Acquire access token using client credentials flow.

        Args:
            resource: Resource base URL (``GRAPH_RESOURCE`` or ``EXCHANGE_RESOURCE``).

        Returns:
            str: Valid access token.

        Raises:
            RuntimeError: If token acquisition fails.
        """
        app = self._get_app()
        logger.debug("Acquiring token for %s using client credentials flow...", resource)

        result = app.acquire_token_for_client(scopes=[f"{resource}/.default"])

        if "access_token" in result:
            return result["access_token"]

        error_description = result.get("error_description", "Unknown error")
        error = result.get("error", "unknown")
        logger.error(f"Failed to acquire token: {error} - {error_description}")
        raise RuntimeError(f"Failed to acquire access token: {error_description}")

    def _get_token_device_code(self, resource: str) -> str:
        """
        Acquire access token using device code flow.

        Args:
            resource: Resource base URL (``GRAPH_RESOURCE`` or ``EXCHANGE_RESOURCE``).

        Returns:
            str: Valid access token.

        Raises:
            RuntimeError: If token acquisition fails.
        """
        app = self._get_app()
        scopes = self.DELEGATED_SCOPES[resource]

        # Try to get token from cache first
        accounts = app.get_accounts()
        if accounts:
            logger.debug(f"Found {len(accounts)} cached account(s)")
            selected = self._select_account(accounts)
            result = app.acquire_token_silent(scopes=scopes, account=selected)
            if result and "access_token" in result:
                logger.debug("Successfully acquired token for %s from cache", resource)
                self._save_token_cache(app.token_cache)
                return result["access_token"]
            logger.debug(
                "Silent acquisition failed for account %s: %s",
                selected.get("username"),
                result.get("error") if result else "no result",
            )
        else:
            logger.debug("No cached accounts found")

        flow = app.initiate_device_flow(scopes=scopes)

        if "user_code" not in flow:
            error = flow.get("error_description", "Unknown error")
            raise RuntimeError(f"Failed to initiate device flow: {error}")

        # Display instructions to user
        print("\n" + "=" * 60)
        print("AUTHENTICATION REQUIRED")
        print("=" * 60)
        print(f"\n{flow['message']}\n")
        print("=" * 60 + "\n")

        result = app.acquire_token_by_device_flow(flow)

        if "access_token" in result:
            logger.debug("Successfully authenticated")
            self._save_token_cache(app.token_cache)
            return result["access_token"]

        error_description = result.get("error_description", "Unknown error")
        error = result.get("error", "unknown")
        logger.error(f"Failed to acquire token: {error} - {error_description}")
        raise RuntimeError(f"Failed to acquire access token: {error_description}")

    def get_access_token(self, resource: str) -> str:
        """
        Acquire access token for a resource.

        Strategy:
            1. If client credentials are configured, use client credentials flow.
            2. Otherwise, try silent token acquisition using the MSAL cache.
            3. If that fails, fall back to device-code flow.

        Args:
            resource: Resource base URL (``GRAPH_RESOURCE`` or ``EXCHANGE_RESOURCE``).

        Returns:
            str: Valid access token.

        Raises:
            RuntimeError: If token acquisition fails.
        """
        if self._use_client_credentials:
            return self._get_token_client_credentials(resource)
        return self._get_token_device_code(resource)

    def get_auth_headers(self, resource: str) -> dict[str, str]:
        """
        Get HTTP headers with authorization for a resource.

        Args:
            resource: Resource base URL (``GRAPH_RESOURCE`` or ``EXCHANGE_RESOURCE``).

        Returns:
            dict[str, str]: Headers dictionary with Bearer token.
        """
        token = self.get_access_token(resource)
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

