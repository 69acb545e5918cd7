"""Microsoft Graph API client for directory user operations.

Objective:
    Provide a thin wrapper around the Microsoft Graph user endpoints needed
    when converting a user mailbox to a shared mailbox: blocking sign-in and
    rotating the account password.

Responsibilities:
    - Issue authenticated HTTP requests to Graph (via :class:`requests`).
    - Read a user, disable sign-in, reset a password.
    - Generate strong random passwords.

Graph endpoints used:
    - ``GET /users/{id}``
    - ``PATCH /users/{id}`` (``accountEnabled`` / ``passwordProfile``)

Error handling:
    - HTTP errors are logged and raised from :meth:`_make_request`.
"""

import logging
import secrets
import string
from typing import Optional
from urllib.parse import quote

import requests

from .auth import GRAPH_RESOURCE, ServiceAuthenticator
from .config import Settings

logger = logging.getLogger(__name__)

_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*()-_=+"


def generate_password(length: int = 24) -> str:
    """Generate a random password satisfying Entra ID complexity rules.

    The result always contains a lowercase letter, an uppercase letter, a
    digit and a symbol.

    Args:
        length: Password length (minimum 8).

    Returns:
        str: Generated password.
    """
    if length < 8:
        raise ValueError("length must be at least 8")
    while True:
        password = "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
        if (
            any(c.islower() for c in password)
            and any(c.isupper() for c in password)
            and any(c.isdigit() for c in password)
            and any(not c.isalnum() for c in password)
        ):
            return password


class DirectoryClient:
    """
    Client for Microsoft Graph user operations.

    Attributes:
        settings: Application settings.
        auth: Token provider.
    """

    GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

    def __init__(self, settings: Settings, auth: ServiceAuthenticator) -> None:
        """
        Initialize directory client.

        Args:
            settings: Application settings.
            auth: Token provider.
        """
        self.settings = settings
        self.auth = auth
        self._session = requests.Session()

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> dict:
        """Make an authenticated request to Microsoft Graph.

        Args:
            method: HTTP method (GET, PATCH).
            endpoint: API endpoint path.
            params: Query parameters.
            json_data: JSON body data.

        Returns:
            dict: Response JSON data (``{}`` for 204 responses).

        Raises:
            requests.HTTPError: If request fails.
        """
        url = f"{self.GRAPH_BASE_URL}{endpoint}"
        headers = self.auth.get_auth_headers(GRAPH_RESOURCE)

        response = self._session.request(
            method=method,
            url=url,
            headers=headers,
            params=params,
            json=json_data,
            timeout=self.settings.request_timeout,
        )

        if not response.ok:
            logger.error(f"Graph API error: {response.status_code} - {response.text}")
            response.raise_for_status()

        if response.status_code == 204:
            return {}

        return response.json()

    def get_user(self, user_id: str) -> dict:
        """Fetch a user by id or UPN.

        Args:
            user_id: Object id or user principal name.

        Returns:
            dict: User resource with ``id``, ``displayName``,
            ``userPrincipalName`` and ``accountEnabled``.
        """
        endpoint = f"/users/{quote(user_id, safe='@')}"
        params = {"$select": "id,displayName,userPrincipalName,accountEnabled"}
        return self._make_request("GET", endpoint, params=params)

    def disable_sign_in(self, user_id: str) -> None:
        """Block sign-in for a user.

        Args:
            user_id: Object id or user principal name.
        """
        endpoint = f"/users/{quote(user_id, safe='@')}"
        self._make_request("PATCH", endpoint, json_data={"accountEnabled": False})
        logger.debug(f"Disabled sign-in for {user_id}")

    def reset_password(self, user_id: str, password: str) -> None:
        """Set a new password for a user.

        The user is not forced to change it at next sign-in because sign-in is
        blocked for converted mailboxes anyway.

        Args:
            user_id: Object id or user principal name.
            password: New password.
        """
        endpoint = f"/users/{quote(user_id, safe='@')}"
        json_data = {
            "passwordProfile": {
                "password": password,
                "forceChangePasswordNextSignIn": False,
            }
        }
        self._make_request("PATCH", endpoint, json_data=json_data)
        logger.debug(f"Reset password for {user_id}")

    def close(self) -> None:
        """Release pooled HTTP connections."""
        self._session.close()
