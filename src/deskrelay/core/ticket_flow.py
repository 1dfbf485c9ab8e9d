"""Single-recipient ticket sequence: create, optional reply, optional verification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from .api_gateway import DeskApiGateway
from .errors import DeskRelayError, RemoteError
from .profile_store import Profile

logger = logging.getLogger(__name__)

VerificationState = Literal["sent", "not_found", "failed"]


@dataclass(slots=True)
class TicketResult:
    recipient: str
    success: bool
    ticket_created: bool = False
    ticket_number: str | None = None
    ticket_id: str | None = None
    error: str | None = None
    details: str | None = None
    full_response: Any = None

    def to_event(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "recipient": self.recipient,
            "success": self.success,
            "ticketCreated": self.ticket_created,
            "fullResponse": self.full_response,
        }
        if self.ticket_number is not None:
            out["ticketNumber"] = self.ticket_number
        if self.error is not None:
            out["error"] = self.error
        if self.details is not None:
            out["details"] = self.details
        return out


@dataclass(slots=True)
class VerificationOutcome:
    ticket_number: str | None
    success: bool
    verification: VerificationState
    details: str
    full_response: Any = None

    def to_event(self) -> dict[str, Any]:
        return {
            "ticketNumber": self.ticket_number,
            "success": self.success,
            "verification": self.verification,
            "details": self.details,
            "fullResponse": self.full_response,
        }


def _as_str(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


async def create_ticket(
    gateway: DeskApiGateway,
    profile: Profile,
    *,
    recipient: str,
    subject: str,
    description: str,
    send_direct_reply: bool = False,
) -> TicketResult:
    """Create one ticket and, when asked, send the description as a direct reply.

    API failures become a failed result; they are never raised. A failed
    reply keeps `ticket_created=True` and the ticket number so a partial
    success stays distinguishable from a failed create.
    """
    try:
        created = await gateway.create_ticket(profile, subject=subject, description=description, email=recipient)
    except DeskRelayError as exc:
        return TicketResult(
            recipient=recipient,
            success=False,
            error=exc.message,
            full_response=exc.to_payload(),
        )

    ticket_number = _as_str(created.get("ticketNumber")) if isinstance(created, dict) else None
    ticket_id = _as_str(created.get("id")) if isinstance(created, dict) else None
    result = TicketResult(
        recipient=recipient,
        success=True,
        ticket_created=True,
        ticket_number=ticket_number,
        ticket_id=ticket_id,
        full_response=created,
    )
    if not send_direct_reply:
        return result

    try:
        if not profile.from_address:
            raise RemoteError(message="Profile has no reply-from address configured.", status=None, code="reply_from_missing")
        if ticket_id is None:
            raise RemoteError(message="Ticket response did not include an id to reply to.", status=None, code="ticket_id_missing")
        reply = await gateway.send_reply(profile, ticket_id=ticket_id, to=recipient, content=description)
    except DeskRelayError as exc:
        result.success = False
        result.error = f"Ticket created, but reply failed: {exc.message}"
        result.details = "Reply failed"
        result.full_response = {"ticketCreate": created, "sendReply": exc.to_payload()}
        return result

    result.details = "Reply sent"
    result.full_response = {"ticketCreate": created, "sendReply": reply}
    return result


def _history_events(payload: Any) -> list[Any]:
    if isinstance(payload, dict):
        data = payload.get("data")
        return list(data) if isinstance(data, list) else []
    if isinstance(payload, list):
        return list(payload)
    return []


async def verify_ticket_email(
    gateway: DeskApiGateway,
    profile: Profile,
    *,
    ticket_id: str,
    ticket_number: str | None,
) -> VerificationOutcome:
    """Judge "email sent" from the ticket's workflow and notification-rule history."""
    try:
        workflow = await gateway.fetch_workflow_history(profile, ticket_id=ticket_id)
        notification = await gateway.fetch_notification_rule_history(profile, ticket_id=ticket_id)
    except DeskRelayError as exc:
        logger.warning("verification failed for ticket=%s: %s", ticket_number, exc.message)
        return VerificationOutcome(
            ticket_number=ticket_number,
            success=False,
            verification="failed",
            details=f"Verification Failed: {exc.message}",
            full_response=exc.to_payload(),
        )

    events = _history_events(workflow) + _history_events(notification)
    full = {"workflowHistory": workflow, "notificationRuleHistory": notification}
    if events:
        return VerificationOutcome(
            ticket_number=ticket_number,
            success=True,
            verification="sent",
            details=f"Email Sent ({len(events)} automation event(s))",
            full_response=full,
        )
    return VerificationOutcome(
        ticket_number=ticket_number,
        success=False,
        verification="not_found",
        details="Not Found: no workflow or notification rule ran for this ticket",
        full_response=full,
    )
