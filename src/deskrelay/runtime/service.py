"""Shared runtime ownership facade for daemon/app entrypoints."""

from __future__ import annotations

import logging
import time
from threading import RLock
from typing import Any

import httpx

from src.deskrelay.core.api_gateway import DeskApiGateway
from src.deskrelay.core.bulk_job_controller import BulkJobController, EventEmitter
from src.deskrelay.core.config_loader import get_desk_config, get_job_runtime_config, load_config_or_defaults
from src.deskrelay.core.errors import DeskRelayError, ValidationError
from src.deskrelay.core.job_registry import JobConfig
from src.deskrelay.core.profile_store import ProfileStore
from src.deskrelay.core.ticket_flow import create_ticket
from src.deskrelay.core.token_cache import TokenCache

logger = logging.getLogger(__name__)


def _clean_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


class RuntimeService:
    """Single authority for profiles, tokens, the gateway, and bulk jobs.

    Operations return plain dicts shaped like the events the console expects,
    so app surfaces only have to forward them.
    """

    def __init__(
        self,
        *,
        profile_store: ProfileStore | None = None,
        gateway: DeskApiGateway | None = None,
        controller: BulkJobController | None = None,
        config: dict[str, Any] | None = None,
    ) -> None:
        self._lock = RLock()
        self._started = False
        self._last_start_source: str | None = None
        self._last_stop_source: str | None = None
        self._config = config if config is not None else load_config_or_defaults()
        self._http_client: httpx.AsyncClient | None = None
        self._profile_store = profile_store
        self._gateway = gateway
        self._controller = controller
        self._owns_gateway = gateway is None
        self._owns_controller = controller is None

    # -- owned components ---------------------------------------------------

    @property
    def profile_store(self) -> ProfileStore:
        with self._lock:
            if self._profile_store is None:
                self._profile_store = ProfileStore.from_file()
            return self._profile_store

    @property
    def gateway(self) -> DeskApiGateway:
        with self._lock:
            if self._gateway is None:
                desk = get_desk_config(self._config)
                self._http_client = httpx.AsyncClient(timeout=desk["timeout_sec"])
                token_cache = TokenCache(
                    client=self._http_client,
                    token_url=desk["token_url"],
                    timeout_sec=desk["timeout_sec"],
                    expiry_skew_sec=desk["token_expiry_skew_sec"],
                )
                self._gateway = DeskApiGateway(
                    token_cache=token_cache,
                    client=self._http_client,
                    api_base_url=desk["api_base_url"],
                    auth_scheme=desk["auth_scheme"],
                    timeout_sec=desk["timeout_sec"],
                )
            return self._gateway

    @property
    def controller(self) -> BulkJobController:
        with self._lock:
            if self._controller is None:
                knobs = get_job_runtime_config(self._config)
                self._controller = BulkJobController(
                    gateway=self.gateway,
                    pause_poll_sec=knobs["pause_poll_sec"],
                    sleep_tick_sec=knobs["sleep_tick_sec"],
                    verify_delay_sec=knobs["verify_delay_sec"],
                )
            return self._controller

    # -- lifecycle ----------------------------------------------------------

    def start(self, *, source: str = "runtime") -> dict[str, Any]:
        with self._lock:
            already_started = self._started
            self._started = True
            self._last_start_source = source
        return {
            "ok": True,
            "source": "runtime_service",
            "already_started": already_started,
            "started": True,
            "start_source": source,
        }

    async def stop(self, *, source: str = "runtime") -> dict[str, Any]:
        with self._lock:
            self._started = False
            self._last_stop_source = source
            controller = self._controller
            http_client = self._http_client
            self._http_client = None
            # Components built on the closed client are rebuilt on next use.
            if self._owns_gateway:
                self._gateway = None
            if self._owns_controller:
                self._controller = None

        if controller is not None:
            await controller.shutdown()
        if http_client is not None:
            await http_client.aclose()
        return {"ok": True, "source": "runtime_service", "stopped": True, "stop_source": source}

    def health(self) -> dict[str, Any]:
        controller = self._controller
        return {
            "ok": True,
            "source": "runtime_service",
            "runtime": {
                "started": self._started,
                "last_start_source": self._last_start_source,
                "last_stop_source": self._last_stop_source,
            },
            "jobs": controller.runtime_stats() if controller is not None else {"active_jobs": 0},
        }

    # -- profiles -----------------------------------------------------------

    def list_profiles(self) -> list[dict[str, Any]]:
        return self.profile_store.list_public()

    # -- single-shot operations ---------------------------------------------

    async def check_api_status(self, *, profile_name: str | None) -> dict[str, Any]:
        try:
            profile = self.profile_store.get(profile_name)
            token = await self.gateway.get_token(profile)
        except DeskRelayError as exc:
            return {
                "success": False,
                "message": f"Connection failed: {exc.message}",
                "fullResponse": exc.to_payload(),
            }

        full: dict[str, Any] = {"token": token.to_public_dict()}
        try:
            full["agent"] = await self.gateway.fetch_identity(profile)
        except DeskRelayError as exc:
            full["agentError"] = exc.to_payload()
            return {
                "success": True,
                "message": f"Token is valid, but the identity lookup failed: {exc.message}",
                "fullResponse": full,
            }
        return {
            "success": True,
            "message": "Token is valid. Connection to the help desk API is successful.",
            "fullResponse": full,
        }

    async def send_test_ticket(
        self,
        *,
        email: str | None,
        subject: str | None,
        description: str | None,
        send_direct_reply: bool,
        verify_email: bool,
        profile_name: str | None,
        emit: EventEmitter,
    ) -> dict[str, Any]:
        recipient = _clean_text(email)
        try:
            if not recipient or not _clean_text(profile_name):
                raise ValidationError(message="Missing email or profile.")
            profile = self.profile_store.get(profile_name)
        except ValidationError as exc:
            return {"success": False, "error": exc.message}

        result = await create_ticket(
            self.gateway,
            profile,
            recipient=recipient,
            subject=subject or "",
            description=description or "",
            send_direct_reply=send_direct_reply,
        )
        if verify_email and result.ticket_created and result.ticket_id:
            self.controller.spawn_verification(
                profile=profile,
                ticket_id=result.ticket_id,
                ticket_number=result.ticket_number,
                emit=emit,
                event="testTicketVerificationResult",
            )
        out = result.to_event()
        out.pop("recipient", None)
        return out

    async def email_failures(self, *, profile_name: str | None) -> dict[str, Any]:
        try:
            profile = self.profile_store.get(profile_name)
            payload = await self.gateway.fetch_failure_alerts(profile)
        except DeskRelayError as exc:
            return {"success": False, "error": exc.message, "fullResponse": exc.to_payload()}
        data = payload.get("data") if isinstance(payload, dict) and isinstance(payload.get("data"), list) else payload
        return {"success": True, "data": data}

    # -- bulk jobs ----------------------------------------------------------

    def start_bulk_create(
        self,
        *,
        session_id: str,
        emails: list[str],
        subject: str | None,
        description: str | None,
        delay: float,
        send_direct_reply: bool,
        verify_email: bool,
        profile_name: str | None,
        emit: EventEmitter,
        job_id: str | None = None,
    ) -> dict[str, Any]:
        try:
            profile = self.profile_store.get(profile_name)
            if not any(_clean_text(item) for item in emails):
                raise ValidationError(message="At least one email is required.", code="emails_missing")
        except ValidationError as exc:
            return {"ok": False, "error": exc.message, "error_code": exc.code}

        resolved_id = _clean_text(job_id) or self._derive_job_id(session_id)
        config = JobConfig(
            subject=subject or "",
            description=description or "",
            profile=profile,
            delay_sec=max(0.0, float(delay)),
            send_direct_reply=send_direct_reply,
            verify_email=verify_email,
        )
        try:
            job = self.controller.start_job(
                job_id=resolved_id,
                session_id=session_id,
                items=list(emails),
                config=config,
                emit=emit,
            )
        except ValidationError as exc:
            return {"ok": False, "error": exc.message, "error_code": exc.code}
        return {"ok": True, "job": job.to_dict()}

    def _derive_job_id(self, session_id: str) -> str:
        base = f"{session_id}_{int(time.time() * 1000)}"
        registry = self.controller.registry
        candidate = base
        suffix = 1
        while registry.get(candidate) is not None:
            suffix += 1
            candidate = f"{base}_{suffix}"
        return candidate

    def _job_command(self, action: str, job_id: str) -> dict[str, Any]:
        controller = self.controller
        handler = {
            "pause": controller.pause_job,
            "resume": controller.resume_job,
            "end": controller.end_job,
        }[action]
        job = handler(job_id)
        if job is None:
            return {"ok": False, "error": "job not found", "jobId": job_id}
        return {"ok": True, "job": job.to_dict()}

    def pause_job(self, *, job_id: str) -> dict[str, Any]:
        return self._job_command("pause", job_id)

    def resume_job(self, *, job_id: str) -> dict[str, Any]:
        return self._job_command("resume", job_id)

    def end_job(self, *, job_id: str) -> dict[str, Any]:
        return self._job_command("end", job_id)

    def end_session_jobs(self, *, session_id: str) -> dict[str, Any]:
        ended = self.controller.end_session_jobs(session_id)
        if ended:
            logger.info("session=%s disconnected; ended job(s) %s", session_id, ", ".join(ended))
        return {"ok": True, "ended": ended}

    def job_status(self, *, job_id: str) -> dict[str, Any]:
        job = self.controller.registry.get(job_id)
        if job is None:
            return {"ok": False, "job": {"jobId": job_id, "status": "not_running"}}
        return {"ok": True, "job": job.to_dict()}

    def list_jobs(self) -> dict[str, Any]:
        jobs = self.controller.registry.list_jobs() if self._controller is not None else []
        return {"ok": True, "jobs": jobs, "count": len(jobs)}


_RUNTIME_SERVICE: RuntimeService | None = None


def get_runtime_service() -> RuntimeService:
    global _RUNTIME_SERVICE
    if _RUNTIME_SERVICE is None:
        _RUNTIME_SERVICE = RuntimeService()
    return _RUNTIME_SERVICE
