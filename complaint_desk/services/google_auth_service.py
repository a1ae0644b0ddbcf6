"""
Service-account access tokens for the Google APIs.

Uses the OAuth2 JWT bearer grant: an RS256-signed assertion is exchanged for
a short-lived access token. Tokens are cached per (scopes, subject) until
five minutes before they expire.
"""

import asyncio
import time

import jwt

from complaint_desk.infrastructure.observability.logging import get_logger
from complaint_desk.services.google_http import GoogleAPIError, GoogleHTTPService

logger = get_logger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600
REFRESH_MARGIN_SECONDS = 300

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
SHEETS_READONLY_SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"
GMAIL_SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"


class GoogleAuthError(GoogleAPIError):
    """Service-account token could not be obtained."""


class GoogleAuthService(GoogleHTTPService):
    service_name = "Google OAuth"
    error_class = GoogleAuthError
    error_messages = {
        "invalid_grant": "Service account credentials were rejected.",
        "unauthorized_client": "Service account is not allowed to impersonate this user.",
    }

    def __init__(self, client_email: str | None, private_key: str | None, client=None):
        super().__init__(client)
        self.client_email = client_email
        self.private_key = private_key
        self._tokens: dict[tuple[tuple[str, ...], str | None], tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def is_configured(self) -> bool:
        return bool(self.client_email and self.private_key)

    def _build_assertion(self, scopes: tuple[str, ...], subject: str | None, now: int) -> str:
        claims = {
            "iss": self.client_email,
            "scope": " ".join(scopes),
            "aud": TOKEN_URL,
            "iat": now,
            "exp": now + ASSERTION_LIFETIME_SECONDS,
        }
        if subject:
            claims["sub"] = subject
        return jwt.encode(claims, self.private_key, algorithm="RS256")

    async def get_access_token(self, scopes: list[str], subject: str | None = None) -> str:
        """
        Return a cached or freshly minted access token.

        Args:
            scopes: OAuth scopes the token must carry
            subject: Mailbox to impersonate (domain-wide delegation), if any

        Raises:
            GoogleAuthError: If the service account is missing or rejected
        """
        if not self.is_configured():
            raise GoogleAuthError("Google service account is not configured", error_code="config")

        key = (tuple(sorted(scopes)), subject)
        async with self._lock:
            cached = self._tokens.get(key)
            if cached and cached[1] - REFRESH_MARGIN_SECONDS > time.time():
                return cached[0]

            now = int(time.time())
            try:
                assertion = self._build_assertion(key[0], subject, now)
            except (ValueError, TypeError, jwt.PyJWTError) as e:
                logger.error("Failed to sign service account assertion", error=str(e)[:200])
                raise GoogleAuthError(
                    "Invalid service account private key", error_code="config"
                ) from e

            response = await self._request_with_retry(
                "POST",
                TOKEN_URL,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
            data = self._handle_api_response(response, "token")
            access_token = data.get("access_token")
            if not access_token:
                raise GoogleAuthError("Token response did not include an access token")

            expires_at = now + int(data.get("expires_in", ASSERTION_LIFETIME_SECONDS))
            self._tokens[key] = (access_token, expires_at)
            logger.debug("Service account token refreshed", scopes=len(key[0]), delegated=bool(subject))
            return access_token
