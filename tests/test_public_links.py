from datetime import datetime, timedelta, timezone

import pytest

from admissions.core.exceptions import ConflictError, NotFoundError
from admissions.models.application import Application
from admissions.models.program_application import ProgramApplication
from admissions.services.interview_scheduler import InterviewScheduler
from admissions.services.message_dispatcher import MessageDispatcher
from admissions.services.public_link_service import PublicLinkService
from admissions.services.stage_machine import StageMachine


def _schedule(db, pa):
    when = datetime.now(timezone.utc) + timedelta(days=1)
    return InterviewScheduler(db).schedule(pa.id, when, email=True)


def test_applicant_confirms_interview(db, cohort, submit):
    pa = submit()
    token = _schedule(db, pa)["interview"].confirm_token

    interview = PublicLinkService(db).confirm_interview(token, note="Works for me")

    assert interview.status == "confirmed"
    assert interview.confirmed_at is not None
    assert interview.applicant_response_note == "Works for me"
    assert db.get(ProgramApplication, pa.id).stage == "interview_confirmed"
    assert db.query(Application).one().stage == "interview_confirmed"


def test_stale_token_is_rejected_after_rescheduling(db, cohort, submit):
    pa = submit()
    old_token = _schedule(db, pa)["interview"].confirm_token
    _schedule(db, pa)

    with pytest.raises(NotFoundError):
        PublicLinkService(db).confirm_interview(old_token)


def test_applicant_requests_reschedule(db, cohort, submit):
    pa = submit()
    token = _schedule(db, pa)["interview"].confirm_token
    wanted = datetime(2026, 12, 1, 14, 0, tzinfo=timezone.utc)

    interview = PublicLinkService(db).request_reschedule(token, requested_at=wanted, note="Out of town")

    assert interview.status == "reschedule_requested"
    assert interview.requested_at.replace(tzinfo=None) == wanted.replace(tzinfo=None)
    assert interview.applicant_response_note == "Out of town"
    assert db.get(ProgramApplication, pa.id).stage == "invited_to_interview"


def test_participation_confirmed_through_delivered_link(db, cohort, submit, channels):
    pa = submit()
    drafts = StageMachine(db).decide(pa.id, "accepted", email=True)["message_drafts"]
    MessageDispatcher(db, channels).send(pa.id, drafts[0].id)
    token = db.query(Application).one().participation_token

    result = PublicLinkService(db).confirm_participation(token, note="Count me in")

    assert result["program_application_ids"] == [pa.id]
    updated = db.get(ProgramApplication, pa.id)
    assert updated.stage == "participation_confirmed"
    assert updated.participation_confirmed_at is not None
    assert updated.participation_note == "Count me in"
    linked = db.query(Application).one()
    assert linked.stage == "participation_confirmed"
    assert linked.participation_confirmed_at is not None

    again = PublicLinkService(db).confirm_participation(token)
    assert again["participation_confirmed_at"] == result["participation_confirmed_at"]


def test_participation_link_requires_acceptance(db, cohort, submit, channels):
    pa = submit()
    dispatcher = MessageDispatcher(db, channels)
    dispatcher.create_message(pa.id, "email", body="{participation_confirm_url}", send_now=True)
    token = db.query(Application).one().participation_token

    with pytest.raises(ConflictError):
        PublicLinkService(db).confirm_participation(token)


def test_unknown_participation_token(db, cohort):
    with pytest.raises(NotFoundError):
        PublicLinkService(db).confirm_participation("0" * 48)
