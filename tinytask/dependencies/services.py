"""
Service container for dependency injection.
Holds the single storage engine and the stateless domain services that every
session's protocol handler shares.
"""
import logging

from tinytask.config import Settings
from tinytask.storage import TaskDatabase
from tinytask.services import TaskService, CommentService, LinkService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Container for all application services."""

    def __init__(self, db: TaskDatabase):
        self.db = db
        self.task_service = TaskService(db)
        self.comment_service = CommentService(db)
        self.link_service = LinkService(db)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        """Open the configured database and wire the services to it."""
        db = TaskDatabase(settings.db_path, busy_timeout_ms=settings.db_busy_timeout_ms)
        logger.info(f"Services initialized (database: {settings.db_path})")
        return cls(db)
