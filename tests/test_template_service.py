from admissions.models.message_template import MessageTemplate
from admissions.services.template_service import DEFAULT_MESSAGE_TEMPLATES, TemplateService


def test_default_templates_are_inserted_once(db):
    service = TemplateService(db)

    assert service.ensure_default_templates() == len(DEFAULT_MESSAGE_TEMPLATES)
    assert service.ensure_default_templates() == 0
    assert db.query(MessageTemplate).count() == len(DEFAULT_MESSAGE_TEMPLATES)


def test_bootstrap_keeps_edited_templates(db):
    db.add(MessageTemplate(key="reminder", label="Reminder", subject="Custom", body="Custom body {name}"))
    db.commit()

    TemplateService(db).ensure_default_templates()

    assert TemplateService(db).get_by_key("reminder") == {"subject": "Custom", "body": "Custom body {name}"}


def test_get_by_key_falls_back_to_builtin_default(db):
    db.add(MessageTemplate(key="follow_up", label="Follow Up", subject="Off", body="Off", is_active=False))
    db.commit()
    service = TemplateService(db)

    assert service.get_by_key("follow_up")["subject"] == "Follow Up"
    assert service.get_by_key("decision_accepted")["subject"] == "Application Accepted"
    assert service.get_by_key("no_such_template") is None
