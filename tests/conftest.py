"""
Shared fixtures: a throwaway database per test and the services built on it.
"""
import pytest
from fastapi.testclient import TestClient

from tinytask.app.factory import create_app
from tinytask.config import Settings
from tinytask.dependencies.services import ServiceContainer
from tinytask.mcp.handler import ProtocolHandlerFactory
from tinytask.models import TaskCreate
from tinytask.storage import TaskDatabase


@pytest.fixture
def temp_db(tmp_path):
    """Create a database in a temporary directory."""
    return TaskDatabase(str(tmp_path / "tinytask.db"))


@pytest.fixture
def services(temp_db):
    return ServiceContainer(temp_db)


@pytest.fixture
def task_service(services):
    return services.task_service


@pytest.fixture
def comment_service(services):
    return services.comment_service


@pytest.fixture
def link_service(services):
    return services.link_service


@pytest.fixture
def make_task(task_service):
    """Create a task with sensible defaults; keyword arguments override them."""
    def _make(**kwargs):
        kwargs.setdefault("title", "Test task")
        return task_service.create_task(TaskCreate(**kwargs))
    return _make


@pytest.fixture
def handler_factory(services):
    return ProtocolHandlerFactory(services)


@pytest.fixture
def make_client(tmp_path, services):
    """Build a TestClient for an HTTP-mode app sharing the test services."""
    clients = []

    def _make(**overrides):
        options = {"mode": "http", "db_path": str(tmp_path / "tinytask.db")}
        options.update(overrides)
        app = create_app(Settings(**options), services=services, run_stdio=False, enable_tracing=False)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)
