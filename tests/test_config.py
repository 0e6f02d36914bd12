from datetime import datetime

import pytest

from admissions.core.config import Settings
from admissions.core.links import build_interview_links, format_utc
from admissions.core.normalize import normalize_email, normalize_phone


@pytest.mark.parametrize("raw, expected", [
    ('["https://admin.example.test", "http://localhost:5173"]', ["https://admin.example.test", "http://localhost:5173"]),
    ("https://admin.example.test, http://localhost:5173", ["https://admin.example.test", "http://localhost:5173"]),
    ("*", ["*"]),
])
def test_cors_origins_accept_json_or_comma_separated(monkeypatch, raw, expected):
    monkeypatch.setenv("CORS_ORIGINS", raw)
    assert Settings().cors_origins == expected


def test_public_base_url_falls_back_to_api_base_url(monkeypatch):
    monkeypatch.delenv("PUBLIC_API_BASE_URL", raising=False)
    monkeypatch.setenv("API_BASE_URL", "https://api.internal.test/")
    assert Settings().public_base_url == "https://api.internal.test"


def test_interview_links_use_public_base_url():
    links = build_interview_links("abc123")
    assert links == {
        "confirm_url": "https://api.example.test/public/interviews/abc123/confirm",
        "reschedule_url": "https://api.example.test/public/interviews/abc123/reschedule",
    }


def test_format_utc_treats_naive_datetimes_as_utc():
    assert format_utc(datetime(2026, 11, 2, 9, 30)) == "Mon, 02 Nov 2026 09:30:00 GMT"
    assert format_utc(None) == ""


@pytest.mark.parametrize("raw, expected", [
    ("  Ada@Example.COM ", "ada@example.com"),
    ("", None),
    (None, None),
])
def test_normalize_email(raw, expected):
    assert normalize_email(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("+1 (555) 000-1234", "+15550001234"),
    ("555 0001", "5550001"),
    ("call me", None),
    (None, None),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected
