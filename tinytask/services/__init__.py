"""
Service layer for business logic.
Services contain pure business logic without HTTP framework dependencies.
"""

from tinytask.services.task_service import TaskService
from tinytask.services.comment_service import CommentService
from tinytask.services.link_service import LinkService

__all__ = ["TaskService", "CommentService", "LinkService"]
