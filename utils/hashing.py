import hashlib
from typing import Optional
from core.config import settings

SHORT_HASH_LENGTH = 8


def hash_value(value: str, pepper: str) -> str:
    """SHA-256 of value + pepper, hex encoded."""
    return hashlib.sha256((value + pepper).encode("utf-8")).hexdigest()


def hash_device_id(device_id: str, pepper: Optional[str] = None) -> str:
    """Hash a client device id so raw identifiers are never stored."""
    if pepper is None:
        pepper = settings.DEVICE_ID_PEPPER
    return hash_value(device_id, pepper)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_email(email: str, pepper: Optional[str] = None) -> str:
    """Hash a normalized email for analytics grouping."""
    if pepper is None:
        pepper = settings.EMAIL_PEPPER
    return hash_value(normalize_email(email), pepper)


def short_hash(value: str) -> str:
    # Display only, never used for lookups
    return value[:SHORT_HASH_LENGTH]
