"""Storage engine package."""
from tinytask.storage.database import TaskDatabase, ExecuteResult, NOW_SQL

__all__ = ["TaskDatabase", "ExecuteResult", "NOW_SQL"]
