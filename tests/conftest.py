from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable

import httpx
import pytest

from src.deskrelay.core.api_gateway import DeskApiGateway
from src.deskrelay.core.bulk_job_controller import BulkJobController
from src.deskrelay.core.profile_store import Profile, ProfileStore
from src.deskrelay.core.token_cache import TokenCache

API_BASE = "https://desk.test/api/v1"
TOKEN_URL = "https://accounts.test/oauth/v2/token"


class FakeDesk:
    """In-memory stand-in for the help-desk and accounts endpoints."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.token_status = 200
        self.token_payload: dict[str, Any] = {
            "access_token": "tok-1",
            "expires_in": 3600,
            "token_type": "Bearer",
            "api_domain": "https://www.zohoapis.test",
        }
        self.next_ticket_number = 100
        self.created: list[str] = []
        self.create_failures: dict[str, tuple[int, dict[str, Any]]] = {}
        self.call_delay_sec = 0.0
        self.replies: list[dict[str, Any]] = []
        self.reply_status = 200
        self.history: dict[str, dict[str, Any]] = {
            "WorkflowHistory": {"data": []},
            "NotificationRuleHistory": {"data": []},
        }
        self.history_status = 200
        self.failure_alerts: list[dict[str, Any]] = []

    def api_requests(self, suffix: str) -> list[httpx.Request]:
        return [req for req in self.requests if req.url.path.endswith(suffix)]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "accounts.test":
            self.token_calls += 1
            return httpx.Response(self.token_status, json=self.token_payload)

        if self.call_delay_sec > 0:
            await asyncio.sleep(self.call_delay_sec)

        if request.method == "POST" and path.endswith("/tickets"):
            body = json.loads(request.content)
            email = body["contact"]["email"]
            self.created.append(email)
            if email in self.create_failures:
                status, payload = self.create_failures[email]
                return httpx.Response(status, json=payload)
            number = self.next_ticket_number
            self.next_ticket_number += 1
            return httpx.Response(
                200,
                json={"id": f"id-{number}", "ticketNumber": str(number), "subject": body["subject"]},
            )

        if request.method == "POST" and path.endswith("/sendReply"):
            self.replies.append(json.loads(request.content))
            if self.reply_status >= 400:
                return httpx.Response(self.reply_status, json={"message": "reply rejected"})
            return httpx.Response(200, json={"id": "thread-1", "status": "SUCCESS"})

        if path.endswith("/History"):
            if self.history_status >= 400:
                return httpx.Response(self.history_status, json={"message": "history unavailable"})
            event_filter = request.url.params.get("eventFilter", "")
            return httpx.Response(200, json=self.history.get(event_filter, {"data": []}))

        if path.endswith("/emailFailureAlerts"):
            return httpx.Response(200, json={"data": self.failure_alerts})

        if path.endswith("/myinfo"):
            return httpx.Response(200, json={"firstName": "Ada", "emailId": "ada@example.com"})

        return httpx.Response(404, json={"message": "not found"})


class EventLog:
    """Async emitter that records every (event, payload) pair."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def named(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]

    def terminal_count(self) -> int:
        return sum(1 for name in self.names() if name in {"bulkComplete", "bulkEnded", "bulkError"})


@pytest.fixture()
def profile() -> Profile:
    return Profile(
        name="Support EU",
        org_id="org-1",
        department_id="dept-1",
        refresh_token="refresh-1",
        client_id="client-1",
        client_secret="secret-1",
        from_address="support@example.com",
    )


@pytest.fixture()
def profile_store(profile: Profile) -> ProfileStore:
    return ProfileStore([profile])


@pytest.fixture()
def fake_desk() -> FakeDesk:
    return FakeDesk()


@pytest.fixture()
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture()
def make_gateway(fake_desk: FakeDesk) -> Callable[..., DeskApiGateway]:
    def _make(*, clock: Callable[[], float] = time.time) -> DeskApiGateway:
        client = httpx.AsyncClient(transport=httpx.MockTransport(fake_desk.handler))
        cache = TokenCache(client=client, token_url=TOKEN_URL, clock=clock)
        return DeskApiGateway(token_cache=cache, client=client, api_base_url=API_BASE)

    return _make


@pytest.fixture()
def make_controller(make_gateway) -> Callable[..., BulkJobController]:
    def _make(**kwargs: Any) -> BulkJobController:
        options: dict[str, Any] = {"pause_poll_sec": 0.01, "sleep_tick_sec": 0.01, "verify_delay_sec": 0.0}
        options.update(kwargs)
        return BulkJobController(gateway=make_gateway(), **options)

    return _make
