"""
Tests for TaskService: CRUD, the agent queue, claiming and hand-off.
"""
import threading
from unittest.mock import patch

import pytest

from tinytask.exceptions import ExecuteError, InvalidStateError, NotFoundError, OwnershipError
from tinytask.models import CommentCreate, LinkCreate, TaskListParams, TaskUpdate


class TestTaskCrud:
    """Create, read, update, delete and archive."""

    def test_create_task_defaults(self, make_task):
        task = make_task(title="  Write docs  ")

        assert task["id"] > 0
        assert task["title"] == "Write docs"
        assert task["status"] == "idle"
        assert task["priority"] == 0
        assert task["tags"] == []
        assert task["assigned_to"] is None
        assert task["archived_at"] is None
        assert task["created_at"] == task["updated_at"]

    def test_create_task_with_all_fields(self, make_task):
        task = make_task(
            title="Design", description="API design", status="working",
            assigned_to="architect", created_by="pm", priority=7, tags=["api", "v2"]
        )
        assert task["description"] == "API design"
        assert task["status"] == "working"
        assert task["assigned_to"] == "architect"
        assert task["created_by"] == "pm"
        assert task["priority"] == 7
        assert task["tags"] == ["api", "v2"]

    def test_get_task_includes_relations(self, task_service, comment_service, link_service, make_task):
        task = make_task()
        comment_service.add_comment(CommentCreate(task_id=task["id"], content="first"))
        link_service.add_link(LinkCreate(task_id=task["id"], url="https://example.com/design"))

        fetched = task_service.get_task(task["id"])

        assert [c["content"] for c in fetched["comments"]] == ["first"]
        assert [l["url"] for l in fetched["links"]] == ["https://example.com/design"]

    def test_get_task_without_relations(self, task_service, make_task):
        task = make_task()
        fetched = task_service.get_task(task["id"], include_relations=False)
        assert "comments" not in fetched
        assert "links" not in fetched

    def test_get_missing_task_raises(self, task_service):
        with pytest.raises(NotFoundError) as exc_info:
            task_service.get_task(404)
        assert "404" in exc_info.value.message

    def test_update_changes_only_supplied_fields(self, task_service, make_task):
        task = make_task(title="Old", description="keep me", priority=3, tags=["a"])

        updated = task_service.update_task(TaskUpdate(id=task["id"], title="New"))

        assert updated["title"] == "New"
        assert updated["description"] == "keep me"
        assert updated["priority"] == 3
        assert updated["tags"] == ["a"]
        assert updated["updated_at"] >= task["updated_at"]

    def test_update_replaces_tags(self, task_service, make_task):
        task = make_task(tags=["a", "b"])
        updated = task_service.update_task(TaskUpdate(id=task["id"], tags=["c"]))
        assert updated["tags"] == ["c"]

    def test_update_can_clear_assignee(self, task_service, make_task):
        task = make_task(assigned_to="agent-a")
        updated = task_service.update_task(TaskUpdate(id=task["id"], assigned_to=None))
        assert updated["assigned_to"] is None

    def test_assignee_is_trimmed_on_create_and_update(self, task_service, make_task):
        task = make_task(assigned_to="  architect ")
        assert task["assigned_to"] == "architect"
        assert task_service.claim_next_task("architect")["id"] == task["id"]

        updated = task_service.update_task(TaskUpdate(id=task["id"], assigned_to=" reviewer  "))

        assert updated["assigned_to"] == "reviewer"
        assert [t["id"] for t in task_service.get_queue("reviewer")] == [task["id"]]

    def test_blank_assignee_means_unassigned(self, task_service, make_task):
        task = make_task(assigned_to="   ")
        assert task["assigned_to"] is None

        assigned = task_service.update_task(TaskUpdate(id=task["id"], assigned_to="a"))
        cleared = task_service.update_task(TaskUpdate(id=task["id"], assigned_to=" "))

        assert assigned["assigned_to"] == "a"
        assert cleared["assigned_to"] is None

    def test_update_with_no_changes_returns_task(self, task_service, make_task):
        task = make_task()
        assert task_service.update_task(TaskUpdate(id=task["id"]))["id"] == task["id"]

    def test_update_missing_task_raises(self, task_service):
        with pytest.raises(NotFoundError):
            task_service.update_task(TaskUpdate(id=999, title="x"))

    def test_delete_task_cascades(self, task_service, comment_service, make_task):
        task = make_task()
        comment_service.add_comment(CommentCreate(task_id=task["id"], content="bye"))

        task_service.delete_task(task["id"])

        with pytest.raises(NotFoundError):
            task_service.get_task(task["id"])
        assert comment_service.list_comments(task["id"]) == []

    def test_delete_missing_task_raises(self, task_service):
        with pytest.raises(NotFoundError):
            task_service.delete_task(999)

    def test_archive_is_idempotent(self, task_service, make_task):
        task = make_task()

        first = task_service.archive_task(task["id"])
        second = task_service.archive_task(task["id"])

        assert first["archived_at"] is not None
        assert second["archived_at"] == first["archived_at"]

    def test_archive_missing_task_raises(self, task_service):
        with pytest.raises(NotFoundError):
            task_service.archive_task(999)


class TestListTasks:
    """Filtering and pagination of list_tasks."""

    def test_filters_by_assignee_and_status(self, task_service, make_task):
        make_task(title="a1", assigned_to="a")
        make_task(title="a2", assigned_to="a", status="complete")
        make_task(title="b1", assigned_to="b")

        tasks = task_service.list_tasks(TaskListParams(assigned_to="a", status="idle"))

        assert [t["title"] for t in tasks] == ["a1"]

    def test_excludes_archived_by_default(self, task_service, make_task):
        archived = make_task(title="old")
        make_task(title="current")
        task_service.archive_task(archived["id"])

        assert [t["title"] for t in task_service.list_tasks()] == ["current"]
        with_archived = task_service.list_tasks(TaskListParams(include_archived=True))
        assert {t["title"] for t in with_archived} == {"old", "current"}

    def test_orders_by_priority_then_age(self, task_service, make_task):
        make_task(title="low", priority=1)
        make_task(title="high", priority=9)
        make_task(title="low-later", priority=1)

        assert [t["title"] for t in task_service.list_tasks()] == ["high", "low", "low-later"]

    def test_assignee_filter_is_trimmed(self, task_service, make_task):
        make_task(title="a1", assigned_to="a")
        assert [t["title"] for t in task_service.list_tasks(TaskListParams(assigned_to=" a "))] == ["a1"]

    def test_limit_and_offset(self, task_service, make_task):
        for i in range(5):
            make_task(title=f"t{i}")

        page = task_service.list_tasks(TaskListParams(limit=2, offset=2))

        assert [t["title"] for t in page] == ["t2", "t3"]


class TestQueue:
    """get_my_queue and signup_for_task."""

    def test_queue_contains_open_tasks_only(self, task_service, make_task):
        make_task(title="idle", assigned_to="a")
        make_task(title="working", assigned_to="a", status="working")
        make_task(title="done", assigned_to="a", status="complete")
        make_task(title="other", assigned_to="b")
        archived = make_task(title="archived", assigned_to="a")
        task_service.archive_task(archived["id"])

        queue = task_service.get_queue("a")

        assert {t["title"] for t in queue} == {"idle", "working"}

    def test_claims_follow_queue_order(self, task_service, make_task):
        for priority in (1, 5, 3, 10):
            make_task(title=f"p{priority}", assigned_to="a", priority=priority)

        claimed = [task_service.claim_next_task("a")["priority"] for _ in range(4)]

        assert claimed == [10, 5, 3, 1]
        assert task_service.claim_next_task("a") is None

    def test_equal_priority_claims_oldest_first(self, task_service, make_task):
        first = make_task(title="first", assigned_to="a", priority=2)
        second = make_task(title="second", assigned_to="a", priority=2)

        assert task_service.claim_next_task("a")["id"] == first["id"]
        assert task_service.claim_next_task("a")["id"] == second["id"]

    def test_claim_sets_working_and_returns_relations(self, task_service, comment_service, make_task):
        task = make_task(assigned_to="a")
        comment_service.add_comment(CommentCreate(task_id=task["id"], content="context"))

        claimed = task_service.claim_next_task("a")

        assert claimed["id"] == task["id"]
        assert claimed["status"] == "working"
        assert [c["content"] for c in claimed["comments"]] == ["context"]
        assert claimed["links"] == []

    def test_claim_skips_ineligible_tasks(self, task_service, make_task):
        make_task(title="working", assigned_to="a", status="working", priority=9)
        make_task(title="complete", assigned_to="a", status="complete", priority=9)
        archived = make_task(title="archived", assigned_to="a", priority=9)
        task_service.archive_task(archived["id"])
        make_task(title="someone else", assigned_to="b", priority=9)
        make_task(title="unassigned", priority=9)

        assert task_service.claim_next_task("a") is None

    def test_claim_for_unknown_agent_returns_none(self, task_service):
        assert task_service.claim_next_task("nobody") is None

    def test_concurrent_claims_of_single_task(self, task_service, make_task):
        task = make_task(assigned_to="a")
        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def claim():
            barrier.wait()
            claimed = task_service.claim_next_task("a")
            with lock:
                results.append(claimed)

        threads = [threading.Thread(target=claim) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        winners = [r for r in results if r is not None]
        assert len(results) == 2
        assert len(winners) == 1
        assert winners[0]["id"] == task["id"]

    def test_concurrent_claims_never_share_a_task(self, task_service, make_task):
        for i in range(5):
            make_task(title=f"t{i}", assigned_to="a")
        barrier = threading.Barrier(8)
        claimed_ids = []
        lock = threading.Lock()

        def claim():
            barrier.wait()
            claimed = task_service.claim_next_task("a")
            if claimed is not None:
                with lock:
                    claimed_ids.append(claimed["id"])

        threads = [threading.Thread(target=claim) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(claimed_ids) == 5
        assert len(set(claimed_ids)) == 5


class TestMoveTask:
    """Hand-off between agents."""

    def test_move_reassigns_and_resets_to_idle(self, task_service, make_task):
        task = make_task(title="Design API", assigned_to="architect")
        task_service.claim_next_task("architect")

        moved = task_service.move_task(task["id"], "architect", "code-reviewer", "  done with design  ")

        assert moved["assigned_to"] == "code-reviewer"
        assert moved["status"] == "idle"
        handoff = moved["comments"][-1]
        assert handoff["content"] == "done with design"
        assert handoff["created_by"] == "architect"

    def test_moved_task_is_next_for_new_agent(self, task_service, make_task):
        task = make_task(assigned_to="architect")
        task_service.move_task(task["id"], "architect", "reviewer", "over to you")

        assert task_service.claim_next_task("reviewer")["id"] == task["id"]

    def test_move_idle_task(self, task_service, make_task):
        task = make_task(assigned_to="a")
        assert task_service.move_task(task["id"], "a", "b", "handoff")["assigned_to"] == "b"

    def test_move_missing_task_raises(self, task_service):
        with pytest.raises(NotFoundError):
            task_service.move_task(999, "a", "b", "handoff")

    def test_move_by_non_owner_leaves_task_unchanged(self, task_service, make_task):
        task = make_task(assigned_to="a")
        before = task_service.get_task(task["id"])

        with pytest.raises(OwnershipError) as exc_info:
            task_service.move_task(task["id"], "intruder", "b", "mine now")

        assert "not assigned to intruder" in exc_info.value.message
        assert task_service.get_task(task["id"]) == before

    def test_move_unassigned_task_names_no_owner(self, task_service, make_task):
        task = make_task()
        with pytest.raises(OwnershipError) as exc_info:
            task_service.move_task(task["id"], "a", "b", "handoff")
        assert "no one" in exc_info.value.message

    def test_move_complete_task_rejected(self, task_service, make_task):
        task = make_task(assigned_to="a", status="complete")
        before = task_service.get_task(task["id"])

        with pytest.raises(InvalidStateError):
            task_service.move_task(task["id"], "a", "b", "handoff")

        assert task_service.get_task(task["id"]) == before

    def test_failed_comment_insert_rolls_back_reassignment(self, task_service, temp_db, make_task):
        task = make_task(assigned_to="a", status="working")
        before = task_service.get_task(task["id"])
        real_execute = temp_db.execute

        def failing_execute(sql, params=()):
            if sql.lstrip().startswith("INSERT INTO comments"):
                raise ExecuteError("Execute failed: disk I/O error")
            return real_execute(sql, params)

        with patch.object(temp_db, "execute", side_effect=failing_execute):
            with pytest.raises(ExecuteError):
                task_service.move_task(task["id"], "a", "b", "handoff")

        assert task_service.get_task(task["id"]) == before
