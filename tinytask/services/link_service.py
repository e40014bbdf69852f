"""
Link service - business logic for artifact links attached to tasks.
"""
import logging
from typing import Dict, Any, List

from tinytask.storage import TaskDatabase
from tinytask.models.link_models import LinkCreate, LinkUpdate
from tinytask.exceptions import NotFoundError, ExecuteError

logger = logging.getLogger(__name__)


class LinkService:
    """Service for link business logic."""

    def __init__(self, db: TaskDatabase):
        self.db = db

    def _fetch(self, link_id: int):
        return self.db.query_one("SELECT * FROM links WHERE id = ?", (link_id,))

    def add_link(self, link_data: LinkCreate) -> Dict[str, Any]:
        """
        Attach a link to a task.

        Raises:
            NotFoundError: If the task does not exist
        """
        def body():
            task = self.db.query_one("SELECT id FROM tasks WHERE id = ?", (link_data.task_id,))
            if not task:
                raise NotFoundError("Task", link_data.task_id)
            result = self.db.execute(
                "INSERT INTO links (task_id, url, description, created_by) VALUES (?, ?, ?, ?)",
                (
                    link_data.task_id,
                    link_data.url,
                    link_data.description or None,
                    link_data.created_by or None,
                )
            )
            link = self._fetch(result.lastrowid)
            if not link:
                raise ExecuteError("Failed to retrieve created link")
            return link

        return self.db.transaction(body)

    def update_link(self, link_data: LinkUpdate) -> Dict[str, Any]:
        """
        Change a link's url and/or description.

        Raises:
            NotFoundError: If the link does not exist
        """
        changes = link_data.changes()

        def body():
            existing = self._fetch(link_data.id)
            if not existing:
                raise NotFoundError("Link", link_data.id)
            if not changes:
                return existing

            fields = []
            values = []
            if "url" in changes:
                fields.append("url = ?")
                values.append(changes["url"])
            if "description" in changes:
                fields.append("description = ?")
                values.append(changes["description"] or None)
            values.append(link_data.id)
            self.db.execute(f"UPDATE links SET {', '.join(fields)} WHERE id = ?", values)
            return self._fetch(link_data.id)

        return self.db.transaction(body)

    def delete_link(self, link_id: int) -> None:
        """
        Permanently delete a link.

        Raises:
            NotFoundError: If the link does not exist
        """
        result = self.db.execute("DELETE FROM links WHERE id = ?", (link_id,))
        if result.rowcount == 0:
            raise NotFoundError("Link", link_id)

    def list_links(self, task_id: int) -> List[Dict[str, Any]]:
        """All links on a task, oldest first."""
        return self.db.query(
            "SELECT * FROM links WHERE task_id = ? ORDER BY created_at ASC, id ASC",
            (task_id,)
        )
