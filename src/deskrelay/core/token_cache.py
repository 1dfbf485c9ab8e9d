"""Per-profile OAuth access token cache."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable

import httpx

from .config_loader import DEFAULT_TIMEOUT_SEC, DEFAULT_TOKEN_EXPIRY_SKEW_SEC, DEFAULT_TOKEN_URL
from .errors import AuthError
from .profile_store import Profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CachedToken:
    profile_name: str
    access_token: str
    expires_at_epoch: float
    token_type: str | None = None
    api_domain: str | None = None

    def is_usable(self, now: float) -> bool:
        return bool(self.access_token) and self.expires_at_epoch > now

    def to_public_dict(self, now: float | None = None) -> dict[str, Any]:
        """Token metadata safe to show in the console (never the token itself)."""
        current = time.time() if now is None else now
        return {
            "profileName": self.profile_name,
            "token_type": self.token_type,
            "api_domain": self.api_domain,
            "expires_in_sec": max(0, int(self.expires_at_epoch - current)),
        }


def _provider_error(payload: Any, *, status: int | None) -> AuthError:
    error_code = "oauth_http_error" if status is not None else "oauth_error"
    message = f"OAuth token request failed with HTTP {status}." if status is not None else "OAuth token request failed."

    if isinstance(payload, dict):
        raw_code = payload.get("error")
        if isinstance(raw_code, str) and raw_code:
            error_code = raw_code
            message = raw_code
        raw_desc = payload.get("error_description")
        if isinstance(raw_desc, str) and raw_desc:
            message = raw_desc

    if "invalid_code" in error_code.lower() or "invalid_grant" in error_code.lower():
        message = "Refresh token is invalid or expired. Re-authentication is required."

    return AuthError(message=message, code=error_code, payload=payload if isinstance(payload, dict) else None)


class TokenCache:
    """Cache bearer tokens per profile name, refreshing on miss or expiry.

    Entries expire `expiry_skew_sec` before the provider's stated expiry so a
    returned token stays valid for at least the next call. Two coroutines
    missing at once may both refresh; the second write wins.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        expiry_skew_sec: int = DEFAULT_TOKEN_EXPIRY_SKEW_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout_sec)
        self._owns_client = client is None
        self._token_url = token_url
        self._timeout_sec = timeout_sec
        self._expiry_skew_sec = expiry_skew_sec
        self._clock = clock
        self._entries: dict[str, CachedToken] = {}
        self._lock = RLock()
        self.refresh_count = 0

    def peek(self, profile_name: str) -> CachedToken | None:
        with self._lock:
            return self._entries.get(profile_name)

    def invalidate(self, profile_name: str) -> None:
        with self._lock:
            self._entries.pop(profile_name, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    async def get_token(self, profile: Profile, *, force_refresh: bool = False) -> CachedToken:
        if not force_refresh:
            cached = self.peek(profile.name)
            if cached is not None and cached.is_usable(self._clock()):
                return cached

        token = await self._refresh(profile)
        with self._lock:
            self._entries[profile.name] = token
        return token

    async def _refresh(self, profile: Profile) -> CachedToken:
        form = {
            "refresh_token": profile.refresh_token,
            "client_id": profile.client_id,
            "client_secret": profile.client_secret,
            "grant_type": "refresh_token",
        }
        self.refresh_count += 1
        requested_at = self._clock()
        try:
            response = await self._client.post(
                self._token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self._timeout_sec,
            )
        except httpx.HTTPError as exc:
            logger.warning("token refresh failed for profile=%s: %s", profile.name, type(exc).__name__)
            raise AuthError(message="OAuth token request failed due to network error.", code="network_error") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400:
            err = _provider_error(payload, status=response.status_code)
            logger.warning("token refresh rejected for profile=%s: %s", profile.name, err.code)
            raise err
        if not isinstance(payload, dict):
            raise AuthError(message="OAuth token response was not valid JSON.", code="invalid_response")
        if payload.get("error"):
            err = _provider_error(payload, status=None)
            logger.warning("token refresh rejected for profile=%s: %s", profile.name, err.code)
            raise err

        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        if not isinstance(access_token, str) or not access_token.strip():
            raise AuthError(message="OAuth token response missing access token.", code="invalid_response", payload=payload)
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in <= 0:
            raise AuthError(message="OAuth token response missing expires_in.", code="invalid_response", payload=payload)

        logger.info("refreshed access token for profile=%s", profile.name)
        return CachedToken(
            profile_name=profile.name,
            access_token=access_token,
            expires_at_epoch=requested_at + float(expires_in) - self._expiry_skew_sec,
            token_type=payload.get("token_type") if isinstance(payload.get("token_type"), str) else None,
            api_domain=payload.get("api_domain") if isinstance(payload.get("api_domain"), str) else None,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
