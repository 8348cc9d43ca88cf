from __future__ import annotations

import html as html_lib
import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from awaredb import config
from awaredb.apps.tracking import services as tracking_services
from awaredb.apps.tracking.sessions import LaunchIdentifiers, validate_session
from awaredb.errors import UnsupportedContentType

from . import models, placeholders, services, storage

logger = logging.getLogger(__name__)


@dataclass
class LaunchResult:
    html: Optional[str] = None
    redirect_url: Optional[str] = None
    role: Optional[str] = None


def _video_page(content: models.ContentRecord) -> str:
    title = html_lib.escape(content.title or "Training video")
    source = html_lib.escape(f"{config.base_path()}/content/{content.content_url}", quote=True)
    mime_type = mimetypes.guess_type(content.content_url or "")[0] or "video/mp4"
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n<head>\n<meta charset="UTF-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"<title>{title}</title>\n</head>\n<body>\n"
        f"<h1>{title}</h1>\n"
        f'<video controls style="width:100%;max-width:800px">\n'
        f'<source src="{source}" type="{mime_type}">\n'
        "Your browser does not support the video tag.\n"
        "</video>\n</body>\n</html>\n"
    )


def launch_content(
    db: Session,
    identifiers: LaunchIdentifiers,
    *,
    now: Optional[datetime] = None,
) -> LaunchResult:
    """
    Resolve, authorise and render one launch request.

    The role-aware view is marked on the session; the caller commits.
    """
    now = now or datetime.now(timezone.utc)
    session = validate_session(db, identifiers.tracking_link_id, now=now)
    content = services.get_content(db, identifiers.content_id)
    scenario = services.get_scenario(db, session.training_id)
    role = services.classify_role(scenario, content.id)

    tracking_services.record_view(db, session=session, scenario=scenario, role=role, now=now)
    next_url = services.next_step_url(scenario, role, session.tracking_link_id)

    if content.content_type == models.ContentType.VIDEO.value:
        if storage.is_remote_url(content.content_url):
            return LaunchResult(redirect_url=content.content_url, role=role)
        return LaunchResult(html=_video_page(content), role=role)

    if content.content_type not in models.HTML_CONTENT_TYPES:
        logger.warning(
            "Unsupported content type at launch",
            extra={"content_id": content.id, "content_type": content.content_type},
        )
        raise UnsupportedContentType()

    loaded = storage.load_html(content)
    organization = services.get_organization_profile(db, content.company_id)
    ctx = placeholders.RenderContext(
        content_id=content.id,
        tracking_link_id=session.tracking_link_id,
        role=role,
        next_step_url=next_url,
        logo_url=placeholders.resolve_logo_url(organization),
        base_path=config.base_path(),
        values=placeholders.build_placeholder_values(
            recipient_email=session.recipient_email,
            scenario=scenario,
            email_content=services.get_email_content(db, scenario),
            organization=organization,
            now=now,
        ),
    )
    logger.debug(
        "Rendering launch content",
        extra={"content_id": content.id, "source": loaded.source.value, "role": role},
    )
    return LaunchResult(html=placeholders.render_html(loaded.html, ctx), role=role)
