from __future__ import annotations

import asyncio
import dataclasses
from typing import get_args

from src.deskrelay.core.ticket_flow import VerificationState, create_ticket, verify_ticket_email


def test_create_without_reply(make_gateway, fake_desk, profile):
    result = asyncio.run(
        create_ticket(make_gateway(), profile, recipient="a@example.com", subject="s", description="d")
    )
    assert result.success is True
    assert result.ticket_id == "id-100"
    assert result.details is None
    assert fake_desk.replies == []
    event = result.to_event()
    assert event["ticketNumber"] == "100"
    assert "error" not in event


def test_create_failure_carries_provider_payload(make_gateway, fake_desk, profile):
    fake_desk.create_failures["bad"] = (400, {"errorCode": "INVALID_DATA"})
    result = asyncio.run(create_ticket(make_gateway(), profile, recipient="bad", subject="s", description="d"))

    assert result.success is False
    assert result.ticket_created is False
    assert result.error == "INVALID_DATA"
    assert result.full_response == {"errorCode": "INVALID_DATA"}


def test_reply_sends_description_from_profile_address(make_gateway, fake_desk, profile):
    result = asyncio.run(
        create_ticket(
            make_gateway(),
            profile,
            recipient="a@example.com",
            subject="s",
            description="<p>Hi</p>",
            send_direct_reply=True,
        )
    )
    assert result.details == "Reply sent"
    assert fake_desk.replies == [
        {
            "channel": "EMAIL",
            "fromEmailAddress": "support@example.com",
            "to": "a@example.com",
            "content": "<p>Hi</p>",
            "contentType": "html",
        }
    ]


def test_reply_without_sender_address_is_partial_failure(make_gateway, fake_desk, profile):
    no_sender = dataclasses.replace(profile, from_address=None)
    result = asyncio.run(
        create_ticket(
            make_gateway(),
            no_sender,
            recipient="a@example.com",
            subject="s",
            description="d",
            send_direct_reply=True,
        )
    )
    assert result.ticket_created is True
    assert result.success is False
    assert result.error.startswith("Ticket created, but reply failed:")
    assert fake_desk.replies == []


def test_verification_counts_both_histories(make_gateway, fake_desk, profile):
    fake_desk.history["WorkflowHistory"] = {"data": [{"id": 1}]}
    fake_desk.history["NotificationRuleHistory"] = {"data": [{"id": 2}, {"id": 3}]}

    outcome = asyncio.run(verify_ticket_email(make_gateway(), profile, ticket_id="id-1", ticket_number="1"))
    assert outcome.verification == "sent"
    assert outcome.details == "Email Sent (3 automation event(s))"


def test_verification_states_are_closed_set(make_gateway, fake_desk, profile):
    assert set(get_args(VerificationState)) == {"sent", "not_found", "failed"}
    outcome = asyncio.run(verify_ticket_email(make_gateway(), profile, ticket_id="id-1", ticket_number="1"))
    assert outcome.verification in get_args(VerificationState)
