from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Dict, Optional

from admissions.core.config import settings


def build_interview_links(token: str) -> Dict[str, str]:
    base = settings.public_base_url
    return {
        "confirm_url": f"{base}/public/interviews/{token}/confirm",
        "reschedule_url": f"{base}/public/interviews/{token}/reschedule",
    }


def build_participation_confirm_url(token: str) -> str:
    return f"{settings.public_base_url}/public/participation/{token}/confirm"


def format_utc(value: Optional[datetime]) -> str:
    """RFC 1123 date in GMT, e.g. 'Tue, 20 Oct 2026 09:00:00 GMT'"""
    if value is None:
        return ""
    if value.tzinfo is None:
        # SQLite hands back naive datetimes; everything is stored as UTC
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)
