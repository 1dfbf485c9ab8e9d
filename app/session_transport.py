"""Per-connection command dispatch and event emission for the console socket."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.deskrelay.runtime.service import RuntimeService

logger = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]

_PROFILE_ALIASES = AliasChoices("profileName", "selectedProfileName", "profile_name")


class _Command(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CheckApiStatusCommand(_Command):
    profile_name: str | None = Field(default=None, validation_alias=_PROFILE_ALIASES)


class GetEmailFailuresCommand(_Command):
    profile_name: str | None = Field(default=None, validation_alias=_PROFILE_ALIASES)


class SendTestTicketCommand(_Command):
    email: str | None = None
    subject: str = ""
    description: str = ""
    send_direct_reply: bool = Field(default=False, validation_alias=AliasChoices("sendDirectReply", "send_direct_reply"))
    verify_email: bool = Field(default=False, validation_alias=AliasChoices("verifyEmail", "verify_email"))
    profile_name: str | None = Field(default=None, validation_alias=_PROFILE_ALIASES)


class StartBulkCreateCommand(_Command):
    emails: list[str] = Field(default_factory=list)
    subject: str = ""
    description: str = ""
    delay: float = Field(default=0.0, ge=0)
    send_direct_reply: bool = Field(default=False, validation_alias=AliasChoices("sendDirectReply", "send_direct_reply"))
    verify_email: bool = Field(default=False, validation_alias=AliasChoices("verifyEmail", "verify_email"))
    profile_name: str | None = Field(default=None, validation_alias=_PROFILE_ALIASES)
    job_id: str | None = Field(default=None, validation_alias=AliasChoices("jobId", "job_id"))

    @field_validator("emails", mode="before")
    @classmethod
    def _split_lines(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.splitlines()
        return value


class JobCommand(_Command):
    job_id: str | None = Field(default=None, validation_alias=AliasChoices("jobId", "job_id"))


# command -> (event used to report a rejected payload, key holding the message)
_FAILURE_EVENTS: dict[str, tuple[str, str]] = {
    "checkApiStatus": ("apiStatusResult", "message"),
    "sendTestTicket": ("testTicketResult", "error"),
    "startBulkCreate": ("bulkError", "message"),
    "getEmailFailures": ("emailFailuresResult", "error"),
}


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid command payload."
    first = errors[0]
    where = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid {where}: {first.get('msg')}" if where else str(first.get("msg"))


class SessionTransport:
    """One browser connection: inbound commands in, progress events out.

    Frames are JSON text `{"event": name, "data": {...}}` in both directions.
    Commands that call the help desk run as tasks so a slow probe never
    delays a pause or end issued on the same connection.
    """

    def __init__(self, *, send: SendText, runtime: RuntimeService, session_id: str | None = None) -> None:
        self.session_id = (session_id or "").strip() or f"sess_{uuid4().hex[:10]}"
        self._send_text = send
        self._runtime = runtime
        self._send_lock = asyncio.Lock()
        self._closed = False
        self._active_job_id: str | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "checkApiStatus": self._on_check_api_status,
            "sendTestTicket": self._on_send_test_ticket,
            "startBulkCreate": self._on_start_bulk_create,
            "pauseJob": self._on_pause_job,
            "resumeJob": self._on_resume_job,
            "endJob": self._on_end_job,
            "getJobStatus": self._on_get_job_status,
            "getEmailFailures": self._on_get_email_failures,
        }
        self._background_commands = {"checkApiStatus", "sendTestTicket", "getEmailFailures"}

    @property
    def active_job_id(self) -> str | None:
        return self._active_job_id

    @property
    def closed(self) -> bool:
        return self._closed

    async def emit(self, event: str, payload: dict[str, Any] | None = None) -> None:
        if self._closed:
            logger.debug("dropping %s for closed session=%s", event, self.session_id)
            return
        frame = json.dumps({"event": event, "data": payload or {}}, default=str)
        async with self._send_lock:
            await self._send_text(frame)

    async def handle_text(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            await self.emit("commandError", {"event": None, "message": "Frames must be JSON objects."})
            return
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            await self.emit("commandError", {"event": None, "message": "Frames need a string 'event' field."})
            return
        data = message.get("data")
        await self.dispatch(message["event"], data if isinstance(data, dict) else {})

    async def dispatch(self, event: str, data: dict[str, Any]) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            await self.emit("commandError", {"event": event, "message": f"Unsupported command: {event}"})
            return
        if event in self._background_commands:
            task = asyncio.get_running_loop().create_task(self._guarded(event, handler, data), name=f"{event}:{self.session_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return
        await self._guarded(event, handler, data)

    async def _guarded(self, event: str, handler: Callable[[dict[str, Any]], Awaitable[None]], data: dict[str, Any]) -> None:
        try:
            await handler(data)
        except ValidationError as exc:
            message = _first_error(exc)
            failure = _FAILURE_EVENTS.get(event)
            if failure is None:
                await self.emit("commandError", {"event": event, "message": message})
            else:
                result_event, key = failure
                await self.emit(result_event, {"success": False, key: message})
        except Exception:
            logger.exception("command %s failed for session=%s", event, self.session_id)
            await self.emit("commandError", {"event": event, "message": "A critical server error occurred."})

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._runtime.end_session_jobs(session_id=self.session_id)

    async def wait_for_commands(self, timeout_sec: float = 5.0) -> bool:
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout_sec)
        return not pending

    # -- handlers -----------------------------------------------------------

    async def _on_check_api_status(self, data: dict[str, Any]) -> None:
        cmd = CheckApiStatusCommand.model_validate(data)
        out = await self._runtime.check_api_status(profile_name=cmd.profile_name)
        await self.emit("apiStatusResult", out)

    async def _on_send_test_ticket(self, data: dict[str, Any]) -> None:
        cmd = SendTestTicketCommand.model_validate(data)
        out = await self._runtime.send_test_ticket(
            email=cmd.email,
            subject=cmd.subject,
            description=cmd.description,
            send_direct_reply=cmd.send_direct_reply,
            verify_email=cmd.verify_email,
            profile_name=cmd.profile_name,
            emit=self.emit,
        )
        await self.emit("testTicketResult", out)

    async def _on_start_bulk_create(self, data: dict[str, Any]) -> None:
        cmd = StartBulkCreateCommand.model_validate(data)
        out = self._runtime.start_bulk_create(
            session_id=self.session_id,
            emails=cmd.emails,
            subject=cmd.subject,
            description=cmd.description,
            delay=cmd.delay,
            send_direct_reply=cmd.send_direct_reply,
            verify_email=cmd.verify_email,
            profile_name=cmd.profile_name,
            job_id=cmd.job_id,
            emit=self.emit,
        )
        if not out.get("ok"):
            payload: dict[str, Any] = {"message": out.get("error") or "Could not start job."}
            if cmd.job_id:
                payload["jobId"] = cmd.job_id
            await self.emit("bulkError", payload)
            return
        job = out["job"]
        self._active_job_id = job["jobId"]
        await self.emit("bulkStarted", {"jobId": job["jobId"], "total": job["total"]})

    def _target_job(self, data: dict[str, Any]) -> str | None:
        cmd = JobCommand.model_validate(data)
        return (cmd.job_id or "").strip() or self._active_job_id

    async def _job_command(self, action: Callable[..., dict[str, Any]], data: dict[str, Any]) -> None:
        job_id = self._target_job(data)
        if job_id is None:
            return
        out = action(job_id=job_id)
        job = out.get("job") if out.get("ok") else None
        status = job["status"] if isinstance(job, dict) else "not_running"
        await self.emit("jobStatus", {"jobId": job_id, "status": status})

    async def _on_pause_job(self, data: dict[str, Any]) -> None:
        await self._job_command(self._runtime.pause_job, data)

    async def _on_resume_job(self, data: dict[str, Any]) -> None:
        await self._job_command(self._runtime.resume_job, data)

    async def _on_end_job(self, data: dict[str, Any]) -> None:
        await self._job_command(self._runtime.end_job, data)

    async def _on_get_job_status(self, data: dict[str, Any]) -> None:
        job_id = self._target_job(data)
        if job_id is None:
            await self.emit("jobStatus", {"jobId": None, "status": "not_running"})
            return
        out = self._runtime.job_status(job_id=job_id)
        await self.emit("jobStatus", out["job"])

    async def _on_get_email_failures(self, data: dict[str, Any]) -> None:
        cmd = GetEmailFailuresCommand.model_validate(data)
        out = await self._runtime.email_failures(profile_name=cmd.profile_name)
        await self.emit("emailFailuresResult", out)
