"""Runtime settings read from the environment.

Values are read on every call so that a long-running worker picks up the
same configuration as the API process and tests can patch the environment.
"""

from __future__ import annotations

import os
from urllib.parse import urlparse

ROLE_TRAINING = "training"
ROLE_FOLLOW_ON = "follow_on"

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in _TRUTHY


def base_url() -> str:
    return (os.getenv("APP_BASE_URL") or "http://localhost:8000").strip()


def base_path() -> str:
    """Path component of APP_BASE_URL without the trailing slash ('' at root)."""
    return (urlparse(base_url()).path or "").rstrip("/")


def debug_enabled() -> bool:
    return _flag("APP_DEBUG")


def content_upload_dir() -> str:
    return os.getenv("CONTENT_UPLOAD_DIR", "/var/lib/awaredb/content")


def content_bucket() -> str:
    return (os.getenv("CONTENT_S3_BUCKET") or "").strip()


def aws_region() -> str:
    return (os.getenv("AWS_REGION") or "us-east-1").strip()


def default_logo_url() -> str:
    configured = (os.getenv("DEFAULT_LOGO_URL") or "").strip()
    if configured:
        return configured
    return f"{base_path()}/images/logo.png"


def default_program_contact_details() -> str:
    return os.getenv("DEFAULT_PROGRAM_CONTACT_DETAILS", "your IT security team")


def passing_score() -> float:
    return float(os.getenv("PASSING_SCORE", "80") or "80")


def score_role_fallback() -> str:
    """Role assumed for a score when neither a hint nor the scenario decides it."""
    value = (os.getenv("SCORE_ROLE_FALLBACK") or ROLE_TRAINING).strip().lower()
    if value not in {ROLE_TRAINING, ROLE_FOLLOW_ON}:
        raise ValueError(f"Unsupported SCORE_ROLE_FALLBACK: {value}")
    return value


def events_transport() -> str:
    return (os.getenv("EVENTS_TRANSPORT") or "").strip().lower()


def events_topic_arn() -> str:
    return (os.getenv("EVENTS_SNS_TOPIC_ARN") or "").strip()
