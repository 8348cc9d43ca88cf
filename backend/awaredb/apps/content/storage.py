"""Load the HTML body of a content record from its source.

Priority: `entry_body_html` column, then object storage (remote URL),
then a local file under CONTENT_UPLOAD_DIR.
"""

from __future__ import annotations

import enum
import logging
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from awaredb import config
from awaredb.errors import ContentAccessDenied, ContentNotFound

from .models import ContentRecord

logger = logging.getLogger(__name__)

REMOTE_FETCH_TIMEOUT_SEC = 15


class ContentSource(str, enum.Enum):
    DATABASE = "database"
    OBJECT_STORAGE = "object_storage"
    LOCAL = "local"


@dataclass
class LoadedContent:
    html: str
    source: ContentSource


def is_remote_url(url: str | None) -> bool:
    return bool(url) and urlparse(url).scheme in {"http", "https"}


def _object_key(url: str) -> str:
    return unquote(urlparse(url).path.lstrip("/"))


def fetch_remote_html(url: str) -> str:
    bucket = config.content_bucket()
    if bucket:
        key = _object_key(url)
        try:
            client = boto3.client("s3", region_name=config.aws_region())
            response = client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read().decode("utf-8")
        except (BotoCoreError, ClientError) as exc:
            logger.warning(
                "Object storage fetch failed",
                extra={"error": str(exc), "bucket": bucket, "key": key},
            )
            raise ContentNotFound() from exc

    request = urllib.request.Request(url, method="GET")
    try:
        with urllib.request.urlopen(request, timeout=REMOTE_FETCH_TIMEOUT_SEC) as resp:
            return resp.read().decode("utf-8")
    except OSError as exc:
        logger.warning("Remote content fetch failed", extra={"error": str(exc), "url": url})
        raise ContentNotFound() from exc


def resolve_local_path(upload_dir: str, content_url: str) -> Path:
    """
    Resolve a package path inside the upload directory.

    Anything resolving outside the directory is denied; the caller only ever
    sees a generic 403/404, never the path.
    """
    try:
        root = Path(upload_dir).resolve()
        candidate = (root / content_url.lstrip("/\\")).resolve()
    except (OSError, ValueError) as exc:
        logger.warning("Unresolvable content path", extra={"content_url": content_url})
        raise ContentNotFound() from exc

    if candidate != root and root not in candidate.parents:
        logger.warning(
            "Path traversal attempt blocked",
            extra={"content_url": content_url},
        )
        raise ContentAccessDenied()
    if not candidate.is_file():
        raise ContentNotFound("Content file not found")
    return candidate


def load_html(content: ContentRecord) -> LoadedContent:
    if content.entry_body_html:
        return LoadedContent(html=content.entry_body_html, source=ContentSource.DATABASE)

    if is_remote_url(content.content_url):
        return LoadedContent(
            html=fetch_remote_html(content.content_url),
            source=ContentSource.OBJECT_STORAGE,
        )

    if not content.content_url:
        raise ContentNotFound("Content file not found")

    path = resolve_local_path(config.content_upload_dir(), content.content_url)
    try:
        body = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Local content unreadable", extra={"content_id": content.id})
        raise ContentNotFound("Content file not found") from exc
    return LoadedContent(html=body, source=ContentSource.LOCAL)
