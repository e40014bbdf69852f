"""
Task service - business logic for task operations.
This layer contains no HTTP framework or protocol dependencies.

Besides plain CRUD it implements the two composite operations of the task
assignment state machine (idle -> working -> complete):

- claim_next_task: an agent takes the head of its own idle queue
- move_task: the current owner hands a task to another agent

Both run inside a single storage transaction.
"""
import json
import logging
from typing import Optional, Dict, Any, List

from tinytask.storage import TaskDatabase, NOW_SQL
from tinytask.models.task_models import TaskCreate, TaskUpdate, TaskListParams
from tinytask.exceptions import NotFoundError, OwnershipError, InvalidStateError, ExecuteError
from tinytask.tracing import trace_span

logger = logging.getLogger(__name__)

# Queue order: higher priority first, then oldest first, then lowest id
QUEUE_ORDER = "ORDER BY priority DESC, created_at ASC, id ASC"


class TaskService:
    """Service for task business logic."""

    def __init__(self, db: TaskDatabase):
        """Initialize task service with database dependency."""
        self.db = db

    @staticmethod
    def _parse_task(row: Dict[str, Any]) -> Dict[str, Any]:
        """Decode the JSON tag list stored with a task row."""
        task = dict(row)
        raw_tags = task.get("tags")
        task["tags"] = json.loads(raw_tags) if raw_tags else []
        return task

    def _fetch(self, task_id: int) -> Optional[Dict[str, Any]]:
        row = self.db.query_one("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._parse_task(row) if row else None

    def _with_relations(self, task: Dict[str, Any]) -> Dict[str, Any]:
        """Attach comment and link lists, both in creation order."""
        task["comments"] = self.db.query(
            "SELECT * FROM comments WHERE task_id = ? ORDER BY created_at ASC, id ASC",
            (task["id"],)
        )
        task["links"] = self.db.query(
            "SELECT * FROM links WHERE task_id = ? ORDER BY created_at ASC, id ASC",
            (task["id"],)
        )
        return task

    def create_task(self, task_data: TaskCreate) -> Dict[str, Any]:
        """
        Create a new task.

        Args:
            task_data: Validated task creation data

        Returns:
            Created task as dictionary
        """
        def body():
            result = self.db.execute(
                """
                INSERT INTO tasks (title, description, status, assigned_to, created_by, priority, tags)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_data.title,
                    task_data.description or None,
                    task_data.status or "idle",
                    task_data.assigned_to or None,
                    task_data.created_by or None,
                    task_data.priority,
                    json.dumps(task_data.tags) if task_data.tags is not None else None,
                )
            )
            created = self._fetch(result.lastrowid)
            if not created:
                raise ExecuteError("Failed to retrieve created task")
            return created

        task = self.db.transaction(body)
        logger.info(
            f"Created task {task['id']}",
            extra={"task_id": task["id"], "assigned_to": task["assigned_to"]}
        )
        return task

    def get_task(self, task_id: int, include_relations: bool = True) -> Dict[str, Any]:
        """
        Get a task by ID.

        Raises:
            NotFoundError: If the task does not exist
        """
        task = self._fetch(task_id)
        if not task:
            raise NotFoundError("Task", task_id)
        return self._with_relations(task) if include_relations else task

    def update_task(self, task_data: TaskUpdate) -> Dict[str, Any]:
        """
        Apply a partial update; fields not supplied are left unchanged.

        Raises:
            NotFoundError: If the task does not exist
        """
        changes = task_data.changes()

        def body():
            existing = self._fetch(task_data.id)
            if not existing:
                raise NotFoundError("Task", task_data.id)
            if not changes:
                return existing

            fields = []
            values: List[Any] = []
            for name, value in changes.items():
                if name == "tags":
                    value = json.dumps(value if value is not None else [])
                elif name in ("description", "assigned_to"):
                    value = value or None
                fields.append(f"{name} = ?")
                values.append(value)
            fields.append(f"updated_at = {NOW_SQL}")
            values.append(task_data.id)

            self.db.execute(f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?", values)
            return self._fetch(task_data.id)

        task = self.db.transaction(body)
        logger.debug(f"Updated task {task_data.id}", extra={"fields": sorted(changes)})
        return task

    def delete_task(self, task_id: int) -> None:
        """
        Permanently delete a task; its comments and links go with it.

        Raises:
            NotFoundError: If the task does not exist
        """
        result = self.db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        if result.rowcount == 0:
            raise NotFoundError("Task", task_id)
        logger.info(f"Deleted task {task_id}")

    def archive_task(self, task_id: int) -> Dict[str, Any]:
        """
        Soft-delete a task. Archiving an already archived task is a no-op
        that keeps the original archived_at.

        Raises:
            NotFoundError: If the task does not exist
        """
        def body():
            existing = self._fetch(task_id)
            if not existing:
                raise NotFoundError("Task", task_id)
            if existing["archived_at"]:
                return existing
            self.db.execute(
                f"UPDATE tasks SET archived_at = {NOW_SQL}, updated_at = {NOW_SQL} WHERE id = ?",
                (task_id,)
            )
            return self._fetch(task_id)

        return self.db.transaction(body)

    def list_tasks(self, filters: Optional[TaskListParams] = None) -> List[Dict[str, Any]]:
        """List tasks matching the optional assignee/status filters, in queue order."""
        if filters is None:
            filters = TaskListParams()

        conditions = []
        values: List[Any] = []
        if filters.assigned_to is not None:
            conditions.append("assigned_to = ?")
            values.append(filters.assigned_to)
        if filters.status is not None:
            conditions.append("status = ?")
            values.append(filters.status)
        if not filters.include_archived:
            conditions.append("archived_at IS NULL")

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        values.extend([filters.limit, filters.offset])
        rows = self.db.query(
            f"SELECT * FROM tasks {where_clause} {QUEUE_ORDER} LIMIT ? OFFSET ?",
            values
        )
        return [self._parse_task(row) for row in rows]

    def get_queue(self, agent_name: str) -> List[Dict[str, Any]]:
        """Get an agent's open (idle or working), non-archived tasks in queue order."""
        rows = self.db.query(
            f"""
            SELECT * FROM tasks
            WHERE assigned_to = ?
              AND status IN ('idle', 'working')
              AND archived_at IS NULL
            {QUEUE_ORDER}
            """,
            (agent_name,)
        )
        return [self._parse_task(row) for row in rows]

    def claim_next_task(self, agent_name: str) -> Optional[Dict[str, Any]]:
        """
        Claim the head of an agent's idle queue and mark it working.

        The select and the status change share one write-locked transaction,
        so of several concurrent callers at most one observes a given task
        as idle.

        Args:
            agent_name: Agent whose queue is consulted

        Returns:
            The claimed task with comments and links, or None when the agent
            has no idle, non-archived task
        """
        with trace_span("tasks.claim_next", {"agent": agent_name}):
            def body():
                row = self.db.query_one(
                    f"""
                    SELECT id FROM tasks
                    WHERE assigned_to = ?
                      AND status = 'idle'
                      AND archived_at IS NULL
                    {QUEUE_ORDER}
                    LIMIT 1
                    """,
                    (agent_name,)
                )
                if not row:
                    return None
                self.db.execute(
                    f"UPDATE tasks SET status = 'working', updated_at = {NOW_SQL} WHERE id = ?",
                    (row["id"],)
                )
                return self.get_task(row["id"], include_relations=True)

            task = self.db.transaction(body)

        if task:
            logger.info(f"Agent {agent_name} claimed task {task['id']}", extra={"task_id": task["id"]})
        else:
            logger.debug(f"No idle tasks for agent {agent_name}")
        return task

    def move_task(self, task_id: int, current_agent: str, new_agent: str, comment: str) -> Dict[str, Any]:
        """
        Hand a task from its current owner to another agent.

        The task is reassigned, reset to idle, and a handoff comment authored
        by current_agent is appended. Any guard failure leaves the task and
        its comments untouched.

        Raises:
            NotFoundError: If the task does not exist
            OwnershipError: If current_agent is not the assignee
            InvalidStateError: If the task is complete
        """
        with trace_span("tasks.move", {"task_id": task_id, "from": current_agent, "to": new_agent}):
            def body():
                task = self._fetch(task_id)
                if not task:
                    raise NotFoundError("Task", task_id)
                if task["assigned_to"] != current_agent:
                    raise OwnershipError(task_id, current_agent, task["assigned_to"])
                if task["status"] == "complete":
                    raise InvalidStateError(
                        f"Task {task_id} is complete and cannot be transferred "
                        f"(only idle or working tasks can be moved)"
                    )

                self.db.execute(
                    f"""
                    UPDATE tasks
                    SET assigned_to = ?, status = 'idle', updated_at = {NOW_SQL}
                    WHERE id = ?
                    """,
                    (new_agent, task_id)
                )
                self.db.execute(
                    "INSERT INTO comments (task_id, content, created_by) VALUES (?, ?, ?)",
                    (task_id, comment.strip(), current_agent)
                )
                return self.get_task(task_id, include_relations=True)

            moved = self.db.transaction(body)

        logger.info(
            f"Task {task_id} transferred from {current_agent} to {new_agent}",
            extra={"task_id": task_id}
        )
        return moved
