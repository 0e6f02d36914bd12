import pytest

from admissions.core.security import get_password_hash, verify_password
from admissions.models.application import Application
from admissions.models.application_message import ApplicationMessage
from admissions.models.enrollment import Enrollment
from admissions.models.student_profile import StudentProfile
from admissions.models.user import User
from admissions.services.channel_service import ChannelRegistry
from admissions.services.message_dispatcher import MessageDispatcher
from admissions.services.participation_service import ParticipationConfirmer
from admissions.services.stage_machine import StageMachine
from admissions.services.user_provisioner import UserProvisioner

from conftest import FlakyChannel


@pytest.fixture()
def provisioner(db, channels):
    return UserProvisioner(db, MessageDispatcher(db, channels))


def test_confirming_participation_twice_keeps_first_timestamp(db, cohort, submit):
    pa = submit()
    confirmer = ParticipationConfirmer(db)

    first = confirmer.confirm(pa.id, note="See you there")
    first_at = first.participation_confirmed_at
    second = confirmer.confirm(pa.id)

    assert first_at is not None
    assert second.participation_confirmed_at == first_at
    assert second.stage == "participation_confirmed"
    assert second.participation_note == "See you there"
    linked = db.query(Application).one()
    assert linked.stage == "participation_confirmed"
    assert linked.participation_confirmed_at is not None


def test_create_user_is_idempotent(db, cohort, submit, provisioner, email_channel):
    pa = submit()
    StageMachine(db).patch_stage(pa.id, "participation_confirmed")

    first = provisioner.create_user_from_application(pa.id)
    second = provisioner.create_user_from_application(pa.id)

    assert first["user_id"] == second["user_id"]
    assert first["created"] is True
    assert second["created"] is False
    assert second["generated_password"] is None
    assert len(email_channel.sent) == 1
    assert db.query(ApplicationMessage).filter(ApplicationMessage.template_key == "account_credentials").count() == 1
    assert db.query(User).count() == 1


def test_create_user_provisions_account_profile_and_enrollment(db, cohort, submit, provisioner, email_channel):
    pa = submit()

    result = provisioner.create_user_from_application(pa.id, actor_user_id=1)

    user = db.get(User, result["user_id"])
    assert user.email == "ada@example.com"
    assert user.is_student is True
    assert result["generated_password"].startswith("DH-")
    assert verify_password(result["generated_password"], user.password_hash)
    assert db.get(StudentProfile, user.id).full_name == "Ada Lovelace"
    enrollment = db.query(Enrollment).one()
    assert enrollment.cohort_id == cohort.id
    assert enrollment.student_user_id == user.id
    assert result["program_application"].created_user_id == user.id
    assert result["program_application"].user_created_at is not None

    message = result["credentials"]["message"]
    assert message.status == "sent"
    assert result["generated_password"] in email_channel.sent[0]["body"]
    assert "https://learn.example.test/sign-in" in email_channel.sent[0]["body"]
    assert email_channel.sent[0]["subject"] == "Your Digital Hub Account"


def test_existing_user_is_reused_and_flagged_as_student(db, cohort, submit, provisioner):
    existing = User(email="ada@example.com", password_hash=get_password_hash("secret"), is_student=False)
    db.add(existing)
    db.commit()
    pa = submit()

    result = provisioner.create_user_from_application(pa.id)

    assert result["user_id"] == existing.id
    assert result["generated_password"] is None
    db.refresh(existing)
    assert existing.is_student is True
    assert verify_password("secret", existing.password_hash)


def test_phone_only_applicant_gets_credentials_over_whatsapp(db, cohort, submit, provisioner, whatsapp_channel, email_channel):
    pa = submit(email=None, phone="+15550006")

    result = provisioner.create_user_from_application(pa.id)

    user = db.get(User, result["user_id"])
    assert user.email is None
    assert user.phone == "+15550006"
    assert email_channel.sent == []
    assert len(whatsapp_channel.sent) == 1
    assert result["credentials"]["message"].channel == "sms"


def test_credentials_are_skipped_without_a_cohort(db, program, submit, provisioner, email_channel):
    pa = submit()

    result = provisioner.create_user_from_application(pa.id)

    assert result["user_id"] is not None
    assert result["enrollment"] is None
    assert result["credentials"] == {"skipped": True, "reason": "no_linked_application", "message": None}
    assert email_channel.sent == []


def test_credentials_delivery_failure_does_not_fail_provisioning(db, cohort, submit, whatsapp_channel):
    pa = submit()
    flaky = FlakyChannel("email", failures=1)
    provisioner = UserProvisioner(db, MessageDispatcher(db, ChannelRegistry(email=flaky, whatsapp=whatsapp_channel)))

    result = provisioner.create_user_from_application(pa.id)

    assert result["credentials"]["message"].status == "failed"
    assert db.get(User, result["user_id"]) is not None
