from datetime import datetime, timedelta, timezone

import pytest

from admissions.core.exceptions import ConflictError, NotFoundError, ValidationError
from admissions.models.application import Application
from admissions.services.channel_service import ChannelRegistry
from admissions.services.interview_scheduler import InterviewScheduler
from admissions.services.message_dispatcher import MessageDispatcher
from admissions.services.stage_machine import StageMachine
from admissions.services.template_service import render_template

from conftest import FlakyChannel


def test_render_leaves_unknown_tokens_verbatim():
    rendered = render_template("Hi { name }, see {link} and {missing}", {"name": "Ada", "link": None})
    assert rendered == "Hi Ada, see  and {missing}"


def test_render_handles_empty_template():
    assert render_template(None, {"name": "Ada"}) == ""


def test_failed_send_is_recorded_then_retried(db, cohort, submit, whatsapp_channel):
    pa = submit()
    flaky = FlakyChannel("email", failures=1)
    dispatcher = MessageDispatcher(db, ChannelRegistry(email=flaky, whatsapp=whatsapp_channel))
    draft = dispatcher.create_message(pa.id, "email", subject="Hello {name}", body="Dear {name}")

    failed = dispatcher.send(pa.id, draft.id)

    assert failed.status == "failed"
    assert failed.sent_at is None
    assert failed.meta["last_error"] == "provider unavailable"
    assert failed.subject == "Hello Ada Lovelace"
    assert failed.body == "Dear Ada Lovelace"

    retried = dispatcher.retry(draft.id)

    assert retried.status == "sent"
    assert retried.sent_at is not None
    assert "last_error" not in retried.meta
    assert flaky.sent == [{"to": "ada@example.com", "subject": "Hello Ada Lovelace", "body": "Dear Ada Lovelace"}]


def test_sent_message_cannot_be_sent_again(db, cohort, submit, channels, email_channel):
    pa = submit()
    dispatcher = MessageDispatcher(db, channels)
    message = dispatcher.create_message(pa.id, "email", body="Hi", send_now=True)
    assert message.status == "sent"

    with pytest.raises(ConflictError) as exc:
        dispatcher.send(pa.id, message.id)
    assert exc.value.code == "CONFLICT"
    with pytest.raises(ConflictError):
        dispatcher.retry(message.id)
    assert len(email_channel.sent) == 1


def test_tokens_are_rendered_at_send_time(db, cohort, submit, channels, email_channel):
    pa = submit()
    dispatcher = MessageDispatcher(db, channels)
    draft = dispatcher.create_message(pa.id, "email", body="When: {scheduled_at} {confirm_url} {typo_token}")
    assert draft.body == "When: {scheduled_at} {confirm_url} {typo_token}"

    scheduled_at = datetime(2026, 11, 2, 9, 30, tzinfo=timezone.utc)
    interview = InterviewScheduler(db).schedule(pa.id, scheduled_at)["interview"]
    sent = dispatcher.send(pa.id, draft.id)

    assert sent.body == (
        f"When: Mon, 02 Nov 2026 09:30:00 GMT "
        f"https://api.example.test/public/interviews/{interview.confirm_token}/confirm {{typo_token}}"
    )
    assert sent.subject == "Digital Hub Message"


def test_participation_token_is_generated_once(db, cohort, submit, channels, email_channel):
    pa = submit()
    StageMachine(db).decide(pa.id, "accepted", email=True)
    dispatcher = MessageDispatcher(db, channels)

    first = dispatcher.create_message(pa.id, "email", body="{participation_confirm_url}", send_now=True)
    second = dispatcher.create_message(pa.id, "email", body="{participation_confirm_url}", send_now=True)

    token = db.query(Application).one().participation_token
    assert token and len(token) == 48
    expected = f"https://api.example.test/public/participation/{token}/confirm"
    assert first.body == expected
    assert second.body == expected


def test_create_message_from_template(db, cohort, submit, channels, email_channel):
    pa = submit()

    message = MessageDispatcher(db, channels).create_message(pa.id, "email", template_key="reminder")

    assert message.status == "draft"
    assert message.subject == "Reminder"
    assert message.body.startswith("Hello {name},")
    assert message.template_key == "reminder"


def test_create_message_needs_a_destination(db, cohort, submit, channels):
    pa = submit()
    with pytest.raises(ValidationError):
        MessageDispatcher(db, channels).create_message(pa.id, "whatsapp", body="Hi")


def test_create_message_needs_a_linked_application(db, program, submit, channels):
    pa = submit()
    with pytest.raises(ValidationError):
        MessageDispatcher(db, channels).create_message(pa.id, "email", body="Hi")


def test_explicit_destination_and_whatsapp_send(db, cohort, submit, channels, whatsapp_channel):
    pa = submit()

    message = MessageDispatcher(db, channels).create_message(
        pa.id, "whatsapp", to_value="+15550005", body="Hi {name}", send_now=True
    )

    assert message.status == "sent"
    assert message.channel == "sms"
    assert message.meta["provider"] == "whatsapp"
    assert whatsapp_channel.sent == [{"to": "+15550005", "subject": None, "body": "Hi Ada Lovelace"}]


def test_send_unknown_message(db, cohort, submit, channels):
    pa = submit()
    with pytest.raises(NotFoundError):
        MessageDispatcher(db, channels).send(pa.id, 12345)


def test_interview_draft_sends_with_links(db, cohort, submit, channels, email_channel):
    pa = submit()
    result = InterviewScheduler(db).schedule(pa.id, datetime.now(timezone.utc) + timedelta(days=1), email=True)
    draft = result["message_drafts"][0]

    sent = MessageDispatcher(db, channels).send(pa.id, draft.id)

    assert sent.status == "sent"
    assert result["interview"].confirm_token in email_channel.sent[0]["body"]
