"""
Pydantic models for operation argument validation.
"""
from .task_models import (
    TASK_STATUSES,
    TaskCreate,
    TaskUpdate,
    TaskIdParams,
    TaskListParams,
    AgentParams,
    MoveTaskParams,
    TaskRefParams,
)
from .comment_models import CommentCreate, CommentUpdate, CommentIdParams
from .link_models import LinkCreate, LinkUpdate, LinkIdParams


__all__ = [
    "TASK_STATUSES",
    "TaskCreate",
    "TaskUpdate",
    "TaskIdParams",
    "TaskListParams",
    "AgentParams",
    "MoveTaskParams",
    "CommentCreate",
    "CommentUpdate",
    "CommentIdParams",
    "LinkCreate",
    "LinkUpdate",
    "LinkIdParams",
    "TaskRefParams",
]
