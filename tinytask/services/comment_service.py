"""
Comment service - business logic for task comments.
"""
import logging
from typing import Dict, Any, List

from tinytask.storage import TaskDatabase, NOW_SQL
from tinytask.models.comment_models import CommentCreate, CommentUpdate
from tinytask.exceptions import NotFoundError, ExecuteError

logger = logging.getLogger(__name__)


class CommentService:
    """Service for comment business logic."""

    def __init__(self, db: TaskDatabase):
        self.db = db

    def _fetch(self, comment_id: int):
        return self.db.query_one("SELECT * FROM comments WHERE id = ?", (comment_id,))

    def add_comment(self, comment_data: CommentCreate) -> Dict[str, Any]:
        """
        Add a comment to a task.

        Raises:
            NotFoundError: If the task does not exist
        """
        def body():
            task = self.db.query_one("SELECT id FROM tasks WHERE id = ?", (comment_data.task_id,))
            if not task:
                raise NotFoundError("Task", comment_data.task_id)
            result = self.db.execute(
                "INSERT INTO comments (task_id, content, created_by) VALUES (?, ?, ?)",
                (comment_data.task_id, comment_data.content, comment_data.created_by or None)
            )
            comment = self._fetch(result.lastrowid)
            if not comment:
                raise ExecuteError("Failed to retrieve created comment")
            return comment

        return self.db.transaction(body)

    def update_comment(self, comment_data: CommentUpdate) -> Dict[str, Any]:
        """
        Replace a comment's content and refresh its updated_at.

        Raises:
            NotFoundError: If the comment does not exist
        """
        def body():
            if not self._fetch(comment_data.id):
                raise NotFoundError("Comment", comment_data.id)
            self.db.execute(
                f"UPDATE comments SET content = ?, updated_at = {NOW_SQL} WHERE id = ?",
                (comment_data.content, comment_data.id)
            )
            return self._fetch(comment_data.id)

        return self.db.transaction(body)

    def delete_comment(self, comment_id: int) -> None:
        """
        Permanently delete a comment.

        Raises:
            NotFoundError: If the comment does not exist
        """
        result = self.db.execute("DELETE FROM comments WHERE id = ?", (comment_id,))
        if result.rowcount == 0:
            raise NotFoundError("Comment", comment_id)

    def list_comments(self, task_id: int) -> List[Dict[str, Any]]:
        """All comments on a task, oldest first."""
        return self.db.query(
            "SELECT * FROM comments WHERE task_id = ? ORDER BY created_at ASC, id ASC",
            (task_id,)
        )
