"""
Tests for CommentService.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from tinytask.exceptions import NotFoundError
from tinytask.models import CommentCreate, CommentUpdate


class TestCommentService:
    """Comment CRUD against a real database."""

    def test_add_comment(self, comment_service, make_task):
        task = make_task()

        comment = comment_service.add_comment(
            CommentCreate(task_id=task["id"], content="  looks good  ", created_by="reviewer")
        )

        assert comment["task_id"] == task["id"]
        assert comment["content"] == "looks good"
        assert comment["created_by"] == "reviewer"
        assert comment["created_at"] == comment["updated_at"]

    def test_add_comment_to_missing_task(self, comment_service):
        with pytest.raises(NotFoundError) as exc_info:
            comment_service.add_comment(CommentCreate(task_id=999, content="hello"))
        assert exc_info.value.entity == "Task"

    def test_blank_content_rejected(self):
        with pytest.raises(PydanticValidationError):
            CommentCreate(task_id=1, content="   ")

    def test_update_comment_refreshes_updated_at(self, comment_service, make_task):
        task = make_task()
        comment = comment_service.add_comment(CommentCreate(task_id=task["id"], content="draft"))

        updated = comment_service.update_comment(CommentUpdate(id=comment["id"], content="final"))

        assert updated["content"] == "final"
        assert updated["created_at"] == comment["created_at"]
        assert updated["updated_at"] >= comment["updated_at"]

    def test_update_missing_comment(self, comment_service):
        with pytest.raises(NotFoundError):
            comment_service.update_comment(CommentUpdate(id=999, content="x"))

    def test_delete_comment(self, comment_service, make_task):
        task = make_task()
        comment = comment_service.add_comment(CommentCreate(task_id=task["id"], content="temp"))

        comment_service.delete_comment(comment["id"])

        assert comment_service.list_comments(task["id"]) == []
        with pytest.raises(NotFoundError):
            comment_service.delete_comment(comment["id"])

    def test_list_comments_in_creation_order(self, comment_service, make_task):
        task = make_task()
        other = make_task(title="other")
        for text in ("one", "two", "three"):
            comment_service.add_comment(CommentCreate(task_id=task["id"], content=text))
        comment_service.add_comment(CommentCreate(task_id=other["id"], content="elsewhere"))

        comments = comment_service.list_comments(task["id"])

        assert [c["content"] for c in comments] == ["one", "two", "three"]

    def test_list_comments_for_unknown_task_is_empty(self, comment_service):
        assert comment_service.list_comments(999) == []
