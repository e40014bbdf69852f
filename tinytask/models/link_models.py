"""
Pydantic models for link (artifact reference) operation arguments.
"""
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class LinkCreate(BaseModel):
    """Arguments for add_link. The url is any reference string, not checked as a URL."""
    task_id: int = Field(..., description="Task ID", gt=0)
    url: str = Field(..., description="Link/path/reference", min_length=1)
    description: Optional[str] = Field(None, description="Description of the artifact")
    created_by: Optional[str] = Field(None, description="Agent name")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Link URL is required")
        return v.strip()


class LinkUpdate(BaseModel):
    """Arguments for update_link. Only fields present in the call are changed."""
    id: int = Field(..., description="Link ID", gt=0)
    url: Optional[str] = Field(None, description="New URL")
    description: Optional[str] = Field(None, description="New description")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            raise ValueError("Link URL cannot be empty")
        return v.strip()

    def changes(self) -> dict:
        """Fields explicitly supplied by the caller, excluding the id."""
        return self.model_dump(exclude_unset=True, exclude={"id"})


class LinkIdParams(BaseModel):
    """Arguments for delete_link."""
    id: int = Field(..., description="Link ID", gt=0)
