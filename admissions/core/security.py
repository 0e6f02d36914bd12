import secrets

from werkzeug.security import check_password_hash, generate_password_hash


def get_password_hash(password: str) -> str:
    return generate_password_hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return check_password_hash(hashed_password, plain_password)


def generate_password() -> str:
    """Temporary password handed to a newly provisioned student"""
    return f"DH-{secrets.token_hex(6)}"


def generate_token() -> str:
    """Opaque token embedded in public applicant links (48 hex chars)"""
    return secrets.token_hex(24)
