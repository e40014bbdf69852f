"""
Operation catalog: the statically declared list of tools exposed to agents.

Each entry carries the tool name, a description and its parameters. A
parameter is required unless it is marked "optional". Argument validation
uses the pydantic model registered for the tool in OPERATION_MODELS.
"""
from typing import Any, Dict, List, Type

from pydantic import BaseModel

from tinytask.models import (
    TASK_STATUSES,
    TaskCreate,
    TaskUpdate,
    TaskIdParams,
    TaskListParams,
    AgentParams,
    MoveTaskParams,
    TaskRefParams,
    CommentCreate,
    CommentUpdate,
    CommentIdParams,
    LinkCreate,
    LinkUpdate,
    LinkIdParams,
)

_TASK_ID = {
    "type": "integer",
    "description": "Task ID. Must be a positive integer.",
    "minimum": 1,
    "example": 1
}

_STATUS = {
    "type": "string",
    "enum": TASK_STATUSES,
    "description": "Task status: 'idle' (ready to pick up), 'working' (in progress) or 'complete'."
}

MCP_FUNCTIONS: List[Dict[str, Any]] = [
    {
        "name": "create_task",
        "description": "Create a new task. Returns the created task with its server-assigned id, status (default 'idle') and timestamps.",
        "parameters": {
            "title": {"type": "string", "description": "Task title. Must not be empty.", "example": "Write design doc"},
            "description": {"type": "string", "optional": True, "description": "Task description"},
            "status": dict(_STATUS, optional=True, default="idle"),
            "assigned_to": {"type": "string", "optional": True, "description": "Agent name to assign to"},
            "created_by": {"type": "string", "optional": True, "description": "Agent name creating the task"},
            "priority": {"type": "integer", "optional": True, "default": 0, "description": "Priority level; higher numbers are picked up first (default: 0)"},
            "tags": {"type": "array", "items": {"type": "string"}, "optional": True, "description": "Array of tags"}
        }
    },
    {
        "name": "update_task",
        "description": "Update a task. Only the fields you pass are changed; everything else is left as is.\n\nERROR HANDLING:\n- Returns an error result 'Task not found: X' if the id does not exist.",
        "parameters": {
            "id": _TASK_ID,
            "title": {"type": "string", "optional": True, "description": "New title"},
            "description": {"type": "string", "optional": True, "description": "New description"},
            "status": dict(_STATUS, optional=True),
            "assigned_to": {"type": "string", "optional": True, "description": "New assignee"},
            "priority": {"type": "integer", "optional": True, "description": "New priority"},
            "tags": {"type": "array", "items": {"type": "string"}, "optional": True, "description": "New tags (replaces existing)"}
        }
    },
    {
        "name": "get_task",
        "description": "Get a task by id, including its comments and links (oldest first).",
        "parameters": {"id": _TASK_ID}
    },
    {
        "name": "delete_task",
        "description": "Permanently delete a task together with its comments and links. Prefer archive_task for finished work.",
        "parameters": {"id": _TASK_ID}
    },
    {
        "name": "archive_task",
        "description": "Archive (soft-delete) a task. Archived tasks disappear from queues and default listings. Archiving an archived task is a no-op.",
        "parameters": {"id": _TASK_ID}
    },
    {
        "name": "list_tasks",
        "description": "List tasks ordered by priority (highest first) then creation time (oldest first). Archived tasks are excluded unless include_archived is true.",
        "parameters": {
            "assigned_to": {"type": "string", "optional": True, "description": "Filter by assignee"},
            "status": dict(_STATUS, optional=True),
            "include_archived": {"type": "boolean", "optional": True, "default": False, "description": "Include archived tasks"},
            "limit": {"type": "integer", "optional": True, "default": 100, "minimum": 1, "maximum": 1000, "description": "Max results (default: 100)"},
            "offset": {"type": "integer", "optional": True, "default": 0, "minimum": 0, "description": "Pagination offset"}
        }
    },
    {
        "name": "get_my_queue",
        "description": "Get your open work queue: non-archived tasks assigned to you with status 'idle' or 'working', in the order signup_for_task would hand them out.",
        "parameters": {
            "agent_name": {"type": "string", "description": "Your agent name", "example": "agent-a"}
        }
    },
    {
        "name": "signup_for_task",
        "description": "Claim the next idle task in your queue and mark it 'working'. The highest priority task wins; equal priorities go oldest first. Returns the task with comments and links.\n\nWhen your queue has no idle task the result carries task: null; this is not an error. Concurrent callers never receive the same task.",
        "parameters": {
            "agent_name": {"type": "string", "description": "Agent name signing up for a task", "example": "agent-a"}
        }
    },
    {
        "name": "move_task",
        "description": "Hand a task you own to another agent. The task is reassigned, reset to 'idle' and your comment is appended as the handoff note.\n\nERROR HANDLING:\n- 'Task not found: X' if the id does not exist.\n- 'Task X is not assigned to Y' if you are not the current assignee.\n- Complete tasks cannot be transferred.\nOn any error nothing is changed.",
        "parameters": {
            "task_id": _TASK_ID,
            "current_agent": {"type": "string", "description": "Current agent (for verification)"},
            "new_agent": {"type": "string", "description": "Agent to transfer to"},
            "comment": {"type": "string", "description": "Handoff message/context"}
        }
    },
    {
        "name": "add_comment",
        "description": "Add a comment to a task.",
        "parameters": {
            "task_id": _TASK_ID,
            "content": {"type": "string", "description": "Comment text"},
            "created_by": {"type": "string", "optional": True, "description": "Agent name"}
        }
    },
    {
        "name": "update_comment",
        "description": "Replace the text of a comment.",
        "parameters": {
            "id": {"type": "integer", "minimum": 1, "description": "Comment ID"},
            "content": {"type": "string", "description": "New comment text"}
        }
    },
    {
        "name": "delete_comment",
        "description": "Delete a comment.",
        "parameters": {
            "id": {"type": "integer", "minimum": 1, "description": "Comment ID"}
        }
    },
    {
        "name": "list_comments",
        "description": "List all comments on a task, oldest first.",
        "parameters": {"task_id": _TASK_ID}
    },
    {
        "name": "add_link",
        "description": "Attach a link (URL, file path or any other reference to an artifact) to a task.",
        "parameters": {
            "task_id": _TASK_ID,
            "url": {"type": "string", "description": "Link/path/reference"},
            "description": {"type": "string", "optional": True, "description": "Description of the artifact"},
            "created_by": {"type": "string", "optional": True, "description": "Agent name"}
        }
    },
    {
        "name": "update_link",
        "description": "Update a link's url and/or description.",
        "parameters": {
            "id": {"type": "integer", "minimum": 1, "description": "Link ID"},
            "url": {"type": "string", "optional": True, "description": "New URL"},
            "description": {"type": "string", "optional": True, "description": "New description"}
        }
    },
    {
        "name": "delete_link",
        "description": "Delete a link.",
        "parameters": {
            "id": {"type": "integer", "minimum": 1, "description": "Link ID"}
        }
    },
    {
        "name": "list_links",
        "description": "List all links on a task, oldest first.",
        "parameters": {"task_id": _TASK_ID}
    },
]

OPERATION_MODELS: Dict[str, Type[BaseModel]] = {
    "create_task": TaskCreate,
    "update_task": TaskUpdate,
    "get_task": TaskIdParams,
    "delete_task": TaskIdParams,
    "archive_task": TaskIdParams,
    "list_tasks": TaskListParams,
    "get_my_queue": AgentParams,
    "signup_for_task": AgentParams,
    "move_task": MoveTaskParams,
    "add_comment": CommentCreate,
    "update_comment": CommentUpdate,
    "delete_comment": CommentIdParams,
    "list_comments": TaskRefParams,
    "add_link": LinkCreate,
    "update_link": LinkUpdate,
    "delete_link": LinkIdParams,
    "list_links": TaskRefParams,
}


def _to_tool(func_def: Dict[str, Any]) -> Dict[str, Any]:
    properties = {}
    for name, schema in func_def.get("parameters", {}).items():
        properties[name] = {k: v for k, v in schema.items() if k != "optional"}
    return {
        "name": func_def["name"],
        "description": func_def["description"],
        "inputSchema": {
            "type": "object",
            "properties": properties,
            "required": [k for k, v in func_def.get("parameters", {}).items() if v.get("optional") is not True]
        }
    }


# Built once at import; tools/list returns this list as is
TOOL_DEFINITIONS: List[Dict[str, Any]] = [_to_tool(f) for f in MCP_FUNCTIONS]
