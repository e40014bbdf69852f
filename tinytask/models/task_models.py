"""
Pydantic models for task operation arguments.
"""
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator

TASK_STATUSES = ["idle", "working", "complete"]


def _validate_status(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if v not in TASK_STATUSES:
        raise ValueError(f"Invalid status '{v}'. Must be one of: {', '.join(TASK_STATUSES)}")
    return v


def _validate_not_blank(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("Field cannot be empty or contain only whitespace")
    return v.strip()


def _normalize_agent(v: Optional[str]) -> Optional[str]:
    """Agent names match exactly once trimmed; a blank name means unassigned."""
    if v is None:
        return v
    return v.strip() or None


class TaskCreate(BaseModel):
    """Arguments for create_task."""
    title: str = Field(..., description="Task title", min_length=1)
    description: Optional[str] = Field(None, description="Task description")
    status: Optional[str] = Field("idle", description="Initial status: idle, working, or complete")
    assigned_to: Optional[str] = Field(None, description="Agent name to assign to")
    created_by: Optional[str] = Field(None, description="Agent name creating the task")
    priority: int = Field(0, description="Priority level, higher is more important")
    tags: Optional[List[str]] = Field(None, description="Array of tags")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty or only whitespace."""
        return _validate_not_blank(v)

    @field_validator('status')
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        """Validate status enum."""
        if v is None:
            return "idle"
        return _validate_status(v)

    @field_validator('assigned_to')
    @classmethod
    def validate_assigned_to(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_agent(v)


class TaskUpdate(BaseModel):
    """Arguments for update_task. Only fields present in the call are changed."""
    id: int = Field(..., description="Task ID", gt=0)
    title: Optional[str] = Field(None, description="New title")
    description: Optional[str] = Field(None, description="New description")
    status: Optional[str] = Field(None, description="New status")
    assigned_to: Optional[str] = Field(None, description="New assignee")
    priority: Optional[int] = Field(None, description="New priority")
    tags: Optional[List[str]] = Field(None, description="New tags (replaces existing)")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """A title may be omitted but never blanked."""
        if v is None:
            raise ValueError("Task title cannot be empty")
        return _validate_not_blank(v)

    @field_validator('status')
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        """Validate status enum."""
        if v is None:
            raise ValueError(f"Status cannot be null. Must be one of: {', '.join(TASK_STATUSES)}")
        return _validate_status(v)

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            raise ValueError("Priority cannot be null")
        return v

    @field_validator('assigned_to')
    @classmethod
    def validate_assigned_to(cls, v: Optional[str]) -> Optional[str]:
        """None or blank clears the assignee."""
        return _normalize_agent(v)

    def changes(self) -> dict:
        """Fields explicitly supplied by the caller, excluding the id."""
        return self.model_dump(exclude_unset=True, exclude={"id"})


class TaskIdParams(BaseModel):
    """Arguments for get_task, delete_task and archive_task."""
    id: int = Field(..., description="Task ID", gt=0)


class TaskListParams(BaseModel):
    """Arguments for list_tasks."""
    assigned_to: Optional[str] = Field(None, description="Filter by assignee")
    status: Optional[str] = Field(None, description="Filter by status")
    include_archived: bool = Field(False, description="Include archived tasks")
    limit: int = Field(100, description="Max results", ge=1, le=1000)
    offset: int = Field(0, description="Pagination offset", ge=0)

    @field_validator('status')
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        """Validate status enum."""
        return _validate_status(v)

    @field_validator('assigned_to')
    @classmethod
    def validate_assigned_to(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_agent(v)


class AgentParams(BaseModel):
    """Arguments for get_my_queue and signup_for_task."""
    agent_name: str = Field(..., description="Agent name", min_length=1)

    @field_validator('agent_name')
    @classmethod
    def validate_agent_name(cls, v: str) -> str:
        return _validate_not_blank(v)


class MoveTaskParams(BaseModel):
    """Arguments for move_task (hand a task to another agent)."""
    task_id: int = Field(..., description="Task ID to transfer", gt=0)
    current_agent: str = Field(..., description="Current agent (for verification)", min_length=1)
    new_agent: str = Field(..., description="Agent to transfer to", min_length=1)
    comment: str = Field(..., description="Handoff message/context", min_length=1)

    @field_validator('current_agent', 'new_agent', 'comment')
    @classmethod
    def validate_not_empty_or_whitespace(cls, v: str) -> str:
        """Validate that string fields are not empty or only whitespace."""
        return _validate_not_blank(v)


class TaskRefParams(BaseModel):
    """Arguments for list_comments and list_links."""
    task_id: int = Field(..., description="Task ID", gt=0)
