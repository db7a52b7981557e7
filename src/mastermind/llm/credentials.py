"""Service-account credentials and bearer-token brokering.

A ``CredentialBroker`` turns a Google service account key into short-lived
OAuth2 access tokens (JWT bearer grant, RFC 7523).  Tokens are cached
until they come within ``margin`` seconds of expiry, and concurrent
callers that hit an empty cache share a single refresh.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlencode

import jwt

from mastermind.errors import AuthError
from mastermind.types import AccessToken

from .transport import Transport

_logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPE = "https://www.googleapis.com/auth/cloud-platform"
_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
_ASSERTION_LIFETIME = 3600  # seconds
_DEFAULT_EXPIRES_IN = 3600

# Tokens are never handed out closer than this to expiry
MIN_MARGIN = 60
DEFAULT_MARGIN = 120


@dataclass(frozen=True)
class ServiceAccountCredential:
    """Immutable signing identity loaded from a service account JSON key."""

    client_email: str
    private_key: str
    project_id: str = ""
    token_uri: str = TOKEN_URI

    @classmethod
    def from_json(cls, raw: str) -> ServiceAccountCredential:
        """Parse a service account key; raises ``AuthError`` on bad input."""
        if not raw or not raw.strip():
            raise AuthError("Service Account JSON not configured.")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AuthError(f"Invalid Service Account JSON format: {e.msg}") from None
        if not isinstance(data, dict):
            raise AuthError("Invalid Service Account JSON format: expected an object.")

        missing = [k for k in ("client_email", "private_key") if not data.get(k)]
        if missing:
            raise AuthError(
                f"Service Account JSON missing {' or '.join(missing)}."
            )
        return cls(
            client_email=data["client_email"],
            private_key=data["private_key"],
            project_id=data.get("project_id", ""),
            token_uri=data.get("token_uri") or TOKEN_URI,
        )

    def __repr__(self) -> str:
        return (
            f"ServiceAccountCredential(client_email={self.client_email!r}, "
            f"project_id={self.project_id!r})"
        )


class CredentialBroker:
    """Caches a bearer token and refreshes it with single-flight semantics.

    Parameters
    ----------
    credential:
        A parsed credential, or the raw service account JSON.
    transport:
        Used for the token exchange (one round trip per refresh).
    margin:
        Seconds before expiry at which a cached token stops being handed
        out.  Values below ``MIN_MARGIN`` are raised to it.
    clock:
        Returns the current Unix time; injectable for tests.

    ``refresh_count`` counts completed token exchanges; the agent loop
    compares it around ``get_token()`` to report refreshes.
    """

    def __init__(
        self,
        credential: ServiceAccountCredential | str,
        transport: Transport,
        margin: float = DEFAULT_MARGIN,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._margin = max(margin, MIN_MARGIN)
        self._clock = clock
        self._credential = self._coerce(credential)
        self._token: AccessToken | None = None
        self._inflight: asyncio.Future[AccessToken] | None = None
        self._generation = 0
        self.refresh_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def project_id(self) -> str:
        return self._credential.project_id

    @property
    def margin(self) -> float:
        return self._margin

    async def get_token(self) -> AccessToken:
        """Return a token valid for more than ``margin`` seconds."""
        token = self._token
        if token is not None and token.is_valid(self._clock(), self._margin):
            return token

        if self._inflight is None:
            task = asyncio.ensure_future(self._refresh(self._generation))
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        # Shield so one cancelled caller does not abort the shared refresh
        return await asyncio.shield(self._inflight)

    def replace_credential(self, credential: ServiceAccountCredential | str) -> None:
        """Swap in new key material and drop the cached token."""
        self._credential = self._coerce(credential)
        self._token = None
        self._inflight = None
        self._generation += 1
        _logger.info("Credential replaced; cached token invalidated")

    def invalidate(self) -> None:
        """Forget the cached token (the next call refreshes)."""
        self._token = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce(credential: ServiceAccountCredential | str) -> ServiceAccountCredential:
        if isinstance(credential, ServiceAccountCredential):
            return credential
        return ServiceAccountCredential.from_json(credential)

    def _clear_inflight(self, task: asyncio.Future[AccessToken]) -> None:
        if self._inflight is task:
            self._inflight = None
        # Mark the exception retrieved; every waiter re-raises it anyway
        if not task.cancelled():
            task.exception()

    async def _refresh(self, generation: int) -> AccessToken:
        credential = self._credential
        assertion = self._sign_assertion(credential)
        body = urlencode({"grant_type": _GRANT_TYPE, "assertion": assertion})

        _logger.info("Refreshing access token for %s", credential.client_email)
        resp = await self._transport.request(
            credential.token_uri,
            {"Content-Type": "application/x-www-form-urlencoded"},
            body.encode("ascii"),
        )
        self.refresh_count += 1
        if not resp.ok:
            raise AuthError(
                f"Failed to refresh token (HTTP {resp.status_code}): {resp.text}"
            )

        try:
            data = resp.json()
            value = data["access_token"]
            expires_in = float(data.get("expires_in") or _DEFAULT_EXPIRES_IN)
        except (ValueError, KeyError, TypeError, AttributeError):
            raise AuthError(
                f"Token endpoint returned an unexpected body: {resp.text[:500]}"
            ) from None
        if not isinstance(value, str) or not value:
            raise AuthError("Token endpoint returned an empty access_token")
        token = AccessToken(value=value, expires_at=self._clock() + expires_in)

        if generation == self._generation:
            self._token = token
        else:
            _logger.info("Discarding token minted for a replaced credential")
        return token

    def _sign_assertion(self, credential: ServiceAccountCredential) -> str:
        now = int(self._clock())
        claims = {
            "iss": credential.client_email,
            "scope": SCOPE,
            "aud": credential.token_uri,
            "iat": now,
            "exp": now + _ASSERTION_LIFETIME,
        }
        try:
            return jwt.encode(claims, credential.private_key, algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise AuthError(
                f"Could not sign token assertion with the service account "
                f"private key: {type(e).__name__}"
            ) from None
