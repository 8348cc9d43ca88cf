"""
HTML rewriting for served training content.

All steps work on the full HTML string. A step that finds no marker leaves
the document untouched; a placeholder without a value is left as authored.
"""

from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from awaredb import config

from .models import ContentRecord, OrganizationProfile, ScenarioRole, TrainingScenario

TRAINING_URL_TOKEN = "{{{trainingURL}}}"

META_CONTENT_ID = "tracker-content-id"
META_TRACKING_ID = "tracker-tracking-id"
META_API_BASE = "tracker-api-base"
META_NEXT_URL = "tracker-next-url"
TRACKER_SCRIPT_PATH = "/js/tracker.js"

# data-basename value -> canonical placeholder name
PLACEHOLDER_ALIASES = {
    "CURRENT_YEAR": "CURRENT_YEAR",
    "current_year": "CURRENT_YEAR",
    "SCENARIO_START_DATETIME": "SCENARIO_START_DATETIME",
    "RECIPIENT_EMAIL_ADDRESS": "RECIPIENT_EMAIL_ADDRESS",
    "recipient_email_address": "RECIPIENT_EMAIL_ADDRESS",
    "RECIPIENT_EMAIL_DOMAIN": "RECIPIENT_EMAIL_DOMAIN",
    "FROM_EMAIL_ADDRESS": "FROM_EMAIL_ADDRESS",
    "from_full_email_address": "FROM_EMAIL_ADDRESS",
    "FROM_FRIENDLY_NAME": "FROM_FRIENDLY_NAME",
    "PROGRAM_CONTACT_DETAILS": "PROGRAM_CONTACT_DETAILS",
}

_PLACEHOLDER_SPAN = re.compile(
    r"(?P<open><span\b[^>]*?\bdata-basename\s*=\s*[\"'](?P<name>[A-Za-z_]+)[\"'][^>]*>)"
    r"(?P<inner>.*?)"
    r"(?P<close></span\s*>)",
    re.IGNORECASE | re.DOTALL,
)
_HEAD_CLOSE = re.compile(r"</head\s*>", re.IGNORECASE)
_HEAD_OPEN = re.compile(r"<head\b[^>]*>", re.IGNORECASE)
_HTML_OPEN = re.compile(r"<html\b[^>]*>", re.IGNORECASE)
_DOCTYPE = re.compile(r"\A\s*<!doctype\b[^>]*>", re.IGNORECASE)
_BODY_CLOSE = re.compile(r"</body\s*>", re.IGNORECASE)
_IMG_TAG = re.compile(r"<img\b(?P<attrs>[^>]*)>", re.IGNORECASE)
_CLASS_ATTR = re.compile(r"\bclass\s*=\s*([\"'])(?P<value>.*?)\1", re.IGNORECASE | re.DOTALL)
_SRC_ATTR = re.compile(r"\bsrc\s*=\s*([\"']).*?\1", re.IGNORECASE | re.DOTALL)
_FORM_TAG = re.compile(r"<form\b", re.IGNORECASE)


@dataclass
class RenderContext:
    content_id: str
    tracking_link_id: str
    role: Optional[str]
    next_step_url: str
    logo_url: str
    base_path: str = ""
    values: Dict[str, Optional[str]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Placeholder values
# ---------------------------------------------------------------------------


def format_scenario_start(value: datetime) -> str:
    """e.g. 'October 18, 2026 9:05 AM'"""
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{value:%B} {value.day}, {value.year} {hour}:{value:%M} {meridiem}"


def _email_domain(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    parts = email.split("@")
    if len(parts) != 2 or not parts[1]:
        return None
    return parts[1]


def build_placeholder_values(
    *,
    recipient_email: Optional[str],
    scenario: TrainingScenario,
    email_content: Optional[ContentRecord],
    organization: Optional[OrganizationProfile],
    now: Optional[datetime] = None,
) -> Dict[str, Optional[str]]:
    now = now or datetime.now(timezone.utc)
    started = scenario.scheduled_at or scenario.created_at
    contact = None
    if organization is not None:
        contact = organization.program_contact_details
    return {
        "CURRENT_YEAR": str(now.year),
        "SCENARIO_START_DATETIME": format_scenario_start(started) if started else None,
        "RECIPIENT_EMAIL_ADDRESS": recipient_email or None,
        "RECIPIENT_EMAIL_DOMAIN": _email_domain(recipient_email),
        "FROM_EMAIL_ADDRESS": email_content.email_from_address if email_content else None,
        "FROM_FRIENDLY_NAME": email_content.email_from_name if email_content else None,
        "PROGRAM_CONTACT_DETAILS": contact or config.default_program_contact_details(),
    }


def resolve_logo_url(organization: Optional[OrganizationProfile]) -> str:
    if organization is not None and organization.logo_url:
        return organization.logo_url
    return config.default_logo_url()


# ---------------------------------------------------------------------------
# Insertion helpers
# ---------------------------------------------------------------------------


def _meta_tag(name: str, value: str) -> str:
    return f'<meta name="{name}" content="{html_lib.escape(value, quote=True)}">'


def has_meta(document: str, name: str) -> bool:
    pattern = r"<meta\b[^>]*\bname\s*=\s*[\"']" + re.escape(name) + r"[\"']"
    return re.search(pattern, document, re.IGNORECASE) is not None


def insert_into_head(document: str, snippet: str) -> str:
    """
    Insert before </head>, else right after <head>.

    Documents without a head (bare fragments included) get one, placed after
    <html> or the doctype when present, else at the very start.
    """
    match = _HEAD_CLOSE.search(document)
    if match:
        return document[: match.start()] + snippet + "\n" + document[match.start():]
    match = _HEAD_OPEN.search(document)
    if match:
        return document[: match.end()] + "\n" + snippet + document[match.end():]
    head = f"<head>\n{snippet}\n</head>"
    match = _HTML_OPEN.search(document) or _DOCTYPE.search(document)
    if match:
        return document[: match.end()] + "\n" + head + document[match.end():]
    return head + "\n" + document


def insert_before_body_end(document: str, snippet: str) -> str:
    matches = list(_BODY_CLOSE.finditer(document))
    if matches:
        last = matches[-1]
        return document[: last.start()] + snippet + "\n" + document[last.start():]
    return document + snippet


# ---------------------------------------------------------------------------
# Pipeline steps
# ---------------------------------------------------------------------------


def inject_metadata(document: str, *, content_id: str, tracking_link_id: str) -> str:
    if not has_meta(document, META_CONTENT_ID):
        document = insert_into_head(document, _meta_tag(META_CONTENT_ID, content_id))
    if not has_meta(document, META_TRACKING_ID):
        document = insert_into_head(document, _meta_tag(META_TRACKING_ID, tracking_link_id))
    return document


def substitute_next_step(document: str, next_url: str) -> str:
    if TRAINING_URL_TOKEN not in document:
        return document
    return document.replace(TRAINING_URL_TOKEN, html_lib.escape(next_url, quote=True))


def substitute_runtime_placeholders(document: str, values: Dict[str, Optional[str]]) -> str:
    def replace(match: re.Match) -> str:
        canonical = PLACEHOLDER_ALIASES.get(match.group("name"))
        if canonical is None:
            return match.group(0)
        value = values.get(canonical)
        if value is None or value == "":
            return match.group(0)
        return match.group("open") + html_lib.escape(value, quote=False) + match.group("close")

    return _PLACEHOLDER_SPAN.sub(replace, document)


def _has_logo_class(attrs: str) -> bool:
    match = _CLASS_ATTR.search(attrs)
    if not match:
        return False
    return "logo" in match.group("value").split()


def substitute_logos(document: str, logo_url: str) -> str:
    src = f'src="{html_lib.escape(logo_url, quote=True)}"'

    def replace(match: re.Match) -> str:
        attrs = match.group("attrs")
        if not _has_logo_class(attrs):
            return match.group(0)
        if _SRC_ATTR.search(attrs):
            attrs = _SRC_ATTR.sub(lambda _: src, attrs, count=1)
        elif attrs.rstrip().endswith("/"):
            attrs = attrs.rstrip()[:-1].rstrip() + f" {src} /"
        else:
            attrs = f"{attrs} {src}"
        return f"<img{attrs}>"

    return _IMG_TAG.sub(replace, document)


def has_tracker_script(document: str) -> bool:
    pattern = r"<script\b[^>]*\bsrc\s*=\s*[\"'][^\"']*" + re.escape(TRACKER_SCRIPT_PATH) + r"[\"']"
    return re.search(pattern, document, re.IGNORECASE) is not None


def inject_instrumentation(document: str, *, base_path: str) -> str:
    if not has_meta(document, META_API_BASE):
        document = insert_into_head(document, _meta_tag(META_API_BASE, f"{base_path}/api"))
    if not has_tracker_script(document):
        script_src = html_lib.escape(f"{base_path}{TRACKER_SCRIPT_PATH}", quote=True)
        document = insert_before_body_end(document, f'<script src="{script_src}"></script>')
    return document


def inject_form_interception(document: str, *, role: Optional[str], next_url: str) -> str:
    if role != ScenarioRole.LANDING.value:
        return document
    if not _FORM_TAG.search(document) or has_meta(document, META_NEXT_URL):
        return document
    return insert_into_head(document, _meta_tag(META_NEXT_URL, next_url))


def render_html(document: str, ctx: RenderContext) -> str:
    """Run every substitution step in order and return the HTML to serve."""
    document = inject_metadata(
        document,
        content_id=ctx.content_id,
        tracking_link_id=ctx.tracking_link_id,
    )
    document = substitute_next_step(document, ctx.next_step_url)
    document = substitute_runtime_placeholders(document, ctx.values)
    document = substitute_logos(document, ctx.logo_url)
    document = inject_instrumentation(document, base_path=ctx.base_path)
    document = inject_form_interception(document, role=ctx.role, next_url=ctx.next_step_url)
    return document
