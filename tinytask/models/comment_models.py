"""
Pydantic models for comment operation arguments.
"""
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class CommentCreate(BaseModel):
    """Arguments for add_comment."""
    task_id: int = Field(..., description="Task ID", gt=0)
    content: str = Field(..., description="Comment text", min_length=1)
    created_by: Optional[str] = Field(None, description="Agent name")

    @field_validator('content')
    @classmethod
    def validate_not_empty_or_whitespace(cls, v: str) -> str:
        """Validate that string fields are not empty or only whitespace."""
        if not v or not v.strip():
            raise ValueError("Comment content is required")
        return v.strip()


class CommentUpdate(BaseModel):
    """Arguments for update_comment."""
    id: int = Field(..., description="Comment ID", gt=0)
    content: str = Field(..., description="New comment text", min_length=1)

    @field_validator('content')
    @classmethod
    def validate_not_empty_or_whitespace(cls, v: str) -> str:
        """Validate that string fields are not empty or only whitespace."""
        if not v or not v.strip():
            raise ValueError("Comment content cannot be empty")
        return v.strip()


class CommentIdParams(BaseModel):
    """Arguments for delete_comment."""
    id: int = Field(..., description="Comment ID", gt=0)
