# backend/awaredb/__init__.py
"""
Import ORM models from each app so that Base.metadata.create_all() sees
every table. The model classes live in awaredb/apps/*/models.py.
"""

from .apps.content import models as content_models            # content, scenarios, branding
from .apps.tracking import models as tracking_models          # sessions, state, scores
from .apps.integrations import models as integrations_models  # completion event outbox

__all__ = [
    "content_models",
    "tracking_models",
    "integrations_models",
]
