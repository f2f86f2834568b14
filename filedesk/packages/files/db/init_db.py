"""Database bootstrapping utilities."""

from __future__ import annotations

import logging

from filedesk.packages.files.db import session as db_session
from filedesk.packages.files.models.base import Base
from filedesk.packages.files.models.file_node import FileNode  # noqa: F401 - ensure table registration

logger = logging.getLogger(__name__)


def init_db() -> None:
    """Create all database tables if they do not exist."""
    Base.metadata.create_all(bind=db_session.engine)
    logger.debug("Database tables ensured: %s", ", ".join(sorted(Base.metadata.tables)))
