"""Bulk ticket job state machine running on the asyncio event loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine

from .api_gateway import DeskApiGateway
from .config_loader import DEFAULT_PAUSE_POLL_SEC, DEFAULT_SLEEP_TICK_SEC, DEFAULT_VERIFY_DELAY_SEC
from .errors import CriticalError, ValidationError
from .job_registry import Job, JobConfig, JobRegistry
from .profile_store import Profile
from .ticket_flow import VerificationOutcome, create_ticket, verify_ticket_email

logger = logging.getLogger(__name__)

EventEmitter = Callable[[str, dict[str, Any]], Awaitable[None]]


class BulkJobController:
    """Drive bulk jobs from start to completion or cancellation.

    Each job runs as its own task. Status changes arrive from outside through
    `pause_job` / `resume_job` / `end_job`; the loop only observes them at its
    checkpoints, so an in-flight API call always finishes and reports.
    """

    def __init__(
        self,
        *,
        gateway: DeskApiGateway,
        registry: JobRegistry | None = None,
        pause_poll_sec: float = DEFAULT_PAUSE_POLL_SEC,
        sleep_tick_sec: float = DEFAULT_SLEEP_TICK_SEC,
        verify_delay_sec: float = DEFAULT_VERIFY_DELAY_SEC,
    ) -> None:
        if pause_poll_sec <= 0 or sleep_tick_sec <= 0:
            raise ValueError("pause_poll_sec and sleep_tick_sec must be > 0")
        self._gateway = gateway
        self._registry = registry or JobRegistry()
        self._pause_poll_sec = pause_poll_sec
        self._sleep_tick_sec = sleep_tick_sec
        self._verify_delay_sec = max(0.0, verify_delay_sec)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._verification_tasks: set[asyncio.Task[Any]] = set()

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _safe_emit(emit: EventEmitter, event: str, payload: dict[str, Any]) -> None:
        try:
            await emit(event, payload)
        except Exception:
            logger.exception("failed to emit %s for job=%s", event, payload.get("jobId"))

    # -- status transitions -------------------------------------------------

    def pause_job(self, job_id: str) -> Job | None:
        return self._registry.transition(job_id, from_statuses={"running"}, to_status="paused")

    def resume_job(self, job_id: str) -> Job | None:
        return self._registry.transition(job_id, from_statuses={"paused"}, to_status="running")

    def end_job(self, job_id: str) -> Job | None:
        return self._registry.set_status(job_id, "ended")

    def end_session_jobs(self, session_id: str) -> list[str]:
        ended: list[str] = []
        for job in self._registry.jobs_for_session(session_id):
            if self.end_job(job.job_id) is not None:
                ended.append(job.job_id)
        return ended

    # -- loop helpers -------------------------------------------------------

    def _should_stop(self, job_id: str) -> bool:
        status = self._registry.status_of(job_id)
        return status is None or status == "ended"

    async def _wait_while_paused(self, job_id: str) -> None:
        while self._registry.status_of(job_id) == "paused":
            await asyncio.sleep(self._pause_poll_sec)

    async def _interruptible_sleep(self, job_id: str, seconds: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while not self._should_stop(job_id):
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            await asyncio.sleep(min(self._sleep_tick_sec, remaining))

    # -- jobs ---------------------------------------------------------------

    def start_job(
        self,
        *,
        job_id: str,
        session_id: str,
        items: list[str],
        config: JobConfig,
        emit: EventEmitter,
    ) -> Job:
        try:
            job = self._registry.create(job_id, session_id=session_id, items=items, config=config)
        except KeyError:
            raise ValidationError(message="Job already running.", code="job_exists") from None
        logger.info(
            "starting job=%s session=%s profile=%s items=%d delay=%.2fs",
            job_id,
            session_id,
            config.profile.name,
            len(items),
            config.delay_sec,
        )
        self._spawn(self.run_job(job_id, emit), name=f"bulk-job:{job_id}")
        return job

    async def run_job(self, job_id: str, emit: EventEmitter) -> None:
        job = self._registry.get(job_id)
        if job is None:
            return
        config = job.config
        items = list(job.items)
        errored = False
        attempted = 0

        try:
            for index, raw in enumerate(items):
                if self._should_stop(job_id):
                    break
                await self._wait_while_paused(job_id)
                if self._should_stop(job_id):
                    break

                recipient = raw.strip() if isinstance(raw, str) else ""
                if not recipient:
                    self._registry.advance(job_id, index + 1)
                    continue

                if attempted > 0 and config.delay_sec > 0:
                    await self._interruptible_sleep(job_id, config.delay_sec)
                    if self._should_stop(job_id):
                        break
                    await self._wait_while_paused(job_id)
                    if self._should_stop(job_id):
                        break

                result = await create_ticket(
                    self._gateway,
                    config.profile,
                    recipient=recipient,
                    subject=config.subject,
                    description=config.description,
                    send_direct_reply=config.send_direct_reply,
                )
                attempted += 1
                await self._safe_emit(emit, "ticketResult", {"jobId": job_id, **result.to_event()})

                if config.verify_email and result.ticket_created and result.ticket_id:
                    self.spawn_verification(
                        profile=config.profile,
                        ticket_id=result.ticket_id,
                        ticket_number=result.ticket_number,
                        emit=emit,
                        extra={"jobId": job_id, "recipient": recipient},
                    )

                self._registry.advance(job_id, index + 1)
        except Exception as exc:
            errored = True
            critical = CriticalError(cause=exc)
            logger.exception("critical error in job=%s", job_id)
            await self._safe_emit(emit, "bulkError", {"jobId": job_id, "message": critical.message})
        finally:
            owned = self._registry.remove_if(job_id, job)
            if owned and not errored:
                event = "bulkEnded" if job.status == "ended" else "bulkComplete"
                logger.info("job=%s finished with %s after %d item(s)", job_id, event, job.cursor)
                await self._safe_emit(emit, event, {"jobId": job_id})

    # -- verification -------------------------------------------------------

    def spawn_verification(
        self,
        *,
        profile: Profile,
        ticket_id: str,
        ticket_number: str | None,
        emit: EventEmitter,
        event: str = "ticketUpdate",
        extra: dict[str, Any] | None = None,
    ) -> asyncio.Task[Any]:
        task = self._spawn(
            self._run_verification(
                profile=profile,
                ticket_id=ticket_id,
                ticket_number=ticket_number,
                emit=emit,
                event=event,
                extra=extra or {},
            ),
            name=f"verify:{ticket_number or ticket_id}",
        )
        self._verification_tasks.add(task)
        task.add_done_callback(self._verification_tasks.discard)
        return task

    async def _run_verification(
        self,
        *,
        profile: Profile,
        ticket_id: str,
        ticket_number: str | None,
        emit: EventEmitter,
        event: str,
        extra: dict[str, Any],
    ) -> None:
        if self._verify_delay_sec > 0:
            await asyncio.sleep(self._verify_delay_sec)
        try:
            outcome = await verify_ticket_email(
                self._gateway,
                profile,
                ticket_id=ticket_id,
                ticket_number=ticket_number,
            )
        except Exception as exc:
            logger.exception("verification crashed for ticket=%s", ticket_number)
            outcome = VerificationOutcome(
                ticket_number=ticket_number,
                success=False,
                verification="failed",
                details=f"Verification Failed: {type(exc).__name__}",
                full_response={"error": str(exc)},
            )
        await self._safe_emit(emit, event, {**extra, **outcome.to_event()})

    # -- lifecycle ----------------------------------------------------------

    def runtime_stats(self) -> dict[str, int]:
        return {
            "active_jobs": len(self._registry),
            "pending_tasks": len(self._tasks),
            "pending_verifications": len(self._verification_tasks),
        }

    async def wait_for_idle(self, timeout_sec: float = 5.0) -> bool:
        """Wait until no job or verification task remains."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_sec
        while self._tasks:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.wait(list(self._tasks), timeout=remaining)
        return True

    async def shutdown(self, *, grace_sec: float = 1.0) -> None:
        for job in list(self._registry.all_jobs()):
            self.end_job(job.job_id)
        for task in list(self._verification_tasks):
            task.cancel()
        if await self.wait_for_idle(timeout_sec=grace_sec):
            return
        leftovers = list(self._tasks)
        for task in leftovers:
            task.cancel()
        await asyncio.gather(*leftovers, return_exceptions=True)
