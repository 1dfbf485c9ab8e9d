"""Authenticated calls against the help-desk REST API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .config_loader import DEFAULT_API_BASE_URL, DEFAULT_AUTH_SCHEME, DEFAULT_TIMEOUT_SEC
from .errors import RemoteError
from .profile_store import Profile
from .token_cache import CachedToken, TokenCache

logger = logging.getLogger(__name__)


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message
        code = payload.get("errorCode")
        if isinstance(code, str) and code.strip():
            return code
    return "API Error"


class DeskApiGateway:
    """Attach a valid token and org header to each request.

    `AuthError` from the token cache and `RemoteError` for non-success
    responses propagate to the caller untranslated.
    """

    def __init__(
        self,
        *,
        token_cache: TokenCache,
        client: httpx.AsyncClient | None = None,
        api_base_url: str = DEFAULT_API_BASE_URL,
        auth_scheme: str = DEFAULT_AUTH_SCHEME,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
    ) -> None:
        self._token_cache = token_cache
        self._client = client or httpx.AsyncClient(timeout=timeout_sec)
        self._owns_client = client is None
        self._api_base_url = api_base_url.rstrip("/")
        self._auth_scheme = auth_scheme
        self._timeout_sec = timeout_sec

    @property
    def token_cache(self) -> TokenCache:
        return self._token_cache

    async def get_token(self, profile: Profile) -> CachedToken:
        return await self._token_cache.get_token(profile)

    async def call(
        self,
        method: str,
        path: str,
        *,
        profile: Profile,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        token = await self._token_cache.get_token(profile)
        url = f"{self._api_base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"{self._auth_scheme} {token.access_token}",
            "orgId": profile.org_id,
        }
        try:
            response = await self._client.request(
                method.upper(),
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=self._timeout_sec,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed for profile=%s: %s", method.upper(), path, profile.name, type(exc).__name__)
            raise RemoteError(
                message=f"Request to help desk failed: {type(exc).__name__}",
                status=None,
                code="network_error",
            ) from exc

        payload = _decode_body(response)
        if response.status_code >= 400:
            raise RemoteError(message=_error_message(payload), status=response.status_code, payload=payload)
        return payload

    async def create_ticket(self, profile: Profile, *, subject: str, description: str, email: str) -> Any:
        body = {
            "subject": subject,
            "description": description,
            "departmentId": profile.department_id,
            "contact": {"email": email},
        }
        return await self.call("POST", "tickets", profile=profile, json=body)

    async def send_reply(self, profile: Profile, *, ticket_id: str, to: str, content: str) -> Any:
        body = {
            "channel": "EMAIL",
            "fromEmailAddress": profile.from_address,
            "to": to,
            "content": content,
            "contentType": "html",
        }
        return await self.call("POST", f"tickets/{ticket_id}/sendReply", profile=profile, json=body)

    async def fetch_workflow_history(self, profile: Profile, *, ticket_id: str) -> Any:
        return await self.call("GET", f"tickets/{ticket_id}/History", profile=profile, params={"eventFilter": "WorkflowHistory"})

    async def fetch_notification_rule_history(self, profile: Profile, *, ticket_id: str) -> Any:
        return await self.call(
            "GET",
            f"tickets/{ticket_id}/History",
            profile=profile,
            params={"eventFilter": "NotificationRuleHistory"},
        )

    async def fetch_failure_alerts(self, profile: Profile, *, limit: int = 50) -> Any:
        params = {"department": profile.department_id, "limit": limit}
        return await self.call("GET", "emailFailureAlerts", profile=profile, params=params)

    async def fetch_identity(self, profile: Profile) -> Any:
        return await self.call("GET", "myinfo", profile=profile)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
