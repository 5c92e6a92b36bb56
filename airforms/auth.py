"""
Airtable OAuth and access token management.

Covers the three pieces of the login flow that carry behaviour:
    - Building the Airtable authorize URL.
    - Exchanging an authorization code, or a refresh token, for tokens.
    - Handing out a working access token for a user, refreshing it when
      Airtable reports it expired and persisting the new pair.

Browser sessions themselves live in the repository; see
``Repository.create_session``.
"""

from __future__ import annotations

import logging
import secrets
from urllib.parse import urlencode

import requests

from airforms.airtable import AirtableClient, TokenExpiredError
from airforms.config import AIRTABLE_OAUTH_SCOPES, Settings
from airforms.errors import AirformsError
from airforms.models import TokenSet, User
from airforms.repo import Repository

logger = logging.getLogger(__name__)

AIRTABLE_AUTHORIZE_URL = "https://www.airtable.com/oauth2/v1/authorize"
AIRTABLE_TOKEN_URL = "https://www.airtable.com/oauth2/v1/token"


class OAuthError(AirformsError):
    """Raised when the Airtable token endpoint rejects a grant.

    ``error`` carries the OAuth error code (e.g. ``invalid_grant``) when
    Airtable supplied one.
    """

    def __init__(
        self,
        message: str,
        error: str | None = None,
        description: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.description = description

    @property
    def is_configuration_error(self) -> bool:
        return self.error in ("invalid_client", "invalid_grant")


class OAuthNotConfiguredError(AirformsError):
    """Raised when the Airtable OAuth app settings are incomplete."""

    pass


class AuthenticationError(AirformsError):
    """Raised when a request cannot be tied to a usable Airtable identity."""

    pass


def new_oauth_state() -> str:
    return secrets.token_urlsafe(24)


def build_authorize_url(settings: Settings, state: str) -> str:
    """Return the Airtable authorize URL the browser is redirected to.

    Raises
    ------
    OAuthNotConfiguredError
        If the client id or callback URL is missing.
    """
    if not settings.airtable_client_id or not settings.airtable_oauth_callback_url:
        raise OAuthNotConfiguredError(
            "OAuth not configured. Please set AIRTABLE_CLIENT_ID and "
            "AIRTABLE_OAUTH_CALLBACK_URL in environment variables."
        )
    params = {
        "client_id": settings.airtable_client_id,
        "redirect_uri": settings.airtable_oauth_callback_url,
        "response_type": "code",
        "scope": AIRTABLE_OAUTH_SCOPES,
        "state": state,
    }
    return f"{AIRTABLE_AUTHORIZE_URL}?{urlencode(params)}"


class OAuthClient:
    """Client for the Airtable OAuth token endpoint.

    Parameters
    ----------
    settings : Settings
        Supplies client id, client secret and callback URL.
    session : requests.Session or None
        HTTP session to use. A new one is created if omitted.
    """

    def __init__(
        self, settings: Settings, session: requests.Session | None = None
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    def _post_token(self, data: dict[str, str]) -> TokenSet:
        if not self._settings.oauth_configured:
            raise OAuthNotConfiguredError(
                "OAuth not configured. Please set AIRTABLE_CLIENT_ID, "
                "AIRTABLE_CLIENT_SECRET, and AIRTABLE_OAUTH_CALLBACK_URL in "
                "environment variables."
            )
        data = {
            **data,
            "client_id": self._settings.airtable_client_id,
            "client_secret": self._settings.airtable_client_secret.get_secret_value(),
        }
        try:
            resp = self._session.post(
                AIRTABLE_TOKEN_URL,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self._settings.http_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise OAuthError(f"Token request failed: {exc}") from exc

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            error = body.get("error")
            description = body.get("error_description")
            logger.warning(
                "Airtable token endpoint rejected %s grant: status=%d error=%s",
                data["grant_type"],
                resp.status_code,
                error,
            )
            raise OAuthError(
                description or f"Token request failed with status {resp.status_code}",
                error=error,
                description=description,
            )
        return TokenSet(**resp.json())

    def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code for an access/refresh token pair."""
        return self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._settings.airtable_oauth_callback_url,
            }
        )

    def refresh(self, refresh_token: str) -> TokenSet:
        """Trade a refresh token for a new token pair."""
        return self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )


class TokenManager:
    """Hands out working Airtable access tokens for stored users.

    Parameters
    ----------
    repo : Repository
        Used to persist refreshed tokens.
    oauth : OAuthClient
        Used to refresh expired tokens.
    client_factory : callable
        ``(access_token, session=, timeout=) -> AirtableClient``; injectable
        for tests.
    session : requests.Session or None
        Shared by every client this manager builds. A new one is created
        if omitted.
    timeout : float
        Per-request timeout passed to each client, in seconds.
    """

    def __init__(
        self,
        repo: Repository,
        oauth: OAuthClient,
        client_factory=AirtableClient,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._repo = repo
        self._oauth = oauth
        self._client_factory = client_factory
        self._session = session or requests.Session()
        self._timeout = timeout

    def _new_client(self, access_token: str) -> AirtableClient:
        return self._client_factory(
            access_token, session=self._session, timeout=self._timeout
        )

    def get_valid_access_token(self, user: User) -> str:
        """Return a usable access token for ``user``; see ``client_for``."""
        self.client_for(user)
        return user.access_token

    def client_for(self, user: User) -> AirtableClient:
        """Return an ``AirtableClient`` holding a valid token for ``user``.

        Probes the current token with a cheap metadata call. On
        ``TokenExpiredError`` the refresh token is exchanged, the new pair
        is persisted (Airtable may omit a new refresh token, in which case
        the old one is kept) and ``user`` is updated in place.

        Raises
        ------
        AuthenticationError
            If the token expired and could not be refreshed.
        """
        client = self._new_client(user.access_token)
        try:
            client.list_bases()
            return client
        except TokenExpiredError:
            logger.info("Access token expired for user=%s; refreshing", user.id)

        try:
            tokens = self._oauth.refresh(user.refresh_token)
        except (OAuthError, OAuthNotConfiguredError) as exc:
            logger.warning("Token refresh failed for user=%s: %s", user.id, exc)
            raise AuthenticationError("Failed to refresh access token") from exc

        user.access_token = tokens.access_token
        if tokens.refresh_token:
            user.refresh_token = tokens.refresh_token
        self._repo.update_user_tokens(user.id, user.access_token, user.refresh_token)
        return self._new_client(user.access_token)

    def complete_login(self, code: str) -> User:
        """Finish the OAuth callback: exchange the code and store the user.

        The Airtable user id from ``whoami`` identifies the account, falling
        back to the email.
        """
        tokens = self._oauth.exchange_code(code)
        profile = self._new_client(tokens.access_token).whoami()
        airtable_user_id = profile.get("id") or profile.get("email")
        if not airtable_user_id:
            raise AuthenticationError("Airtable profile has no user id")
        return self._repo.upsert_user(
            airtable_user_id=airtable_user_id,
            profile=profile,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or "",
        )
