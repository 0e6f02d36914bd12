from datetime import date

from admissions.models.application import Application
from admissions.models.program import Cohort
from admissions.services.link_resolver import LinkResolver


def test_linking_twice_returns_the_same_application(db, cohort, submit):
    pa = submit()
    resolver = LinkResolver(db)

    first = resolver.ensure_linked_application_id(pa.id)
    second = resolver.ensure_linked_application_id(pa.id)
    db.commit()

    assert first is not None
    assert first == second
    assert db.query(Application).count() == 1
    linked = db.get(Application, first)
    assert linked.cohort_id == cohort.id
    assert linked.applicant_email_norm == "ada@example.com"
    assert linked.stage == "applied"


def test_no_cohort_means_no_link(db, program, submit):
    pa = submit()
    assert LinkResolver(db).ensure_linked_application_id(pa.id) is None
    assert db.query(Application).count() == 0


def test_best_cohort_prefers_status_then_start_date(db, program, submit):
    db.add_all([
        Cohort(program_id=program.id, name="Planned", status="planned", start_date=date(2026, 1, 1)),
        Cohort(program_id=program.id, name="Open late", status="open", start_date=date(2026, 9, 1)),
        Cohort(program_id=program.id, name="Open soon", status="open", start_date=date(2026, 5, 1)),
        Cohort(program_id=program.id, name="Open undated", status="open"),
    ])
    db.commit()
    pa = submit()

    cohort_id = LinkResolver(db).resolve_target_cohort_id(pa)

    assert db.get(Cohort, cohort_id).name == "Open soon"


def test_explicit_cohort_wins(db, program, cohort, submit):
    other = Cohort(program_id=program.id, name="Autumn", status="planned")
    db.add(other)
    db.commit()
    pa = submit(cohort_id=other.id)

    linked_id = LinkResolver(db).ensure_linked_application_id(pa.id)

    assert db.get(Application, linked_id).cohort_id == other.id


def test_existing_application_is_matched_by_phone(db, cohort, submit):
    existing = Application(cohort_id=cohort.id, applicant_phone_norm="+15550001", stage="reviewing", status="reviewing")
    db.add(existing)
    db.commit()
    pa = submit(email=None, phone="+1 (555) 0001")

    linked_id = LinkResolver(db).ensure_linked_application_id(pa.id)

    assert linked_id == existing.id
    assert db.query(Application).count() == 1


def test_deleted_cohorts_are_ignored(db, program, submit):
    from datetime import datetime, timezone

    db.add(Cohort(program_id=program.id, name="Gone", status="open", deleted_at=datetime.now(timezone.utc)))
    db.commit()
    pa = submit()

    assert LinkResolver(db).resolve_target_cohort_id(pa) is None
