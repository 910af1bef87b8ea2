import pytest

from pgversion.exceptions import MigrationError
from pgversion.version_store import InMemoryVersionStore


class FakeExecutor:
    """Records executed scripts; raises for scripts containing a marker."""

    def __init__(self, fail_marker: str = "-- FAIL"):
        self.fail_marker = fail_marker
        self.executed: list[str] = []

    async def exec_statements(self, sql: str) -> None:
        if self.fail_marker in sql:
            raise MigrationError("syntax error at or near \"FAIL\"")
        self.executed.append(sql)


@pytest.fixture
def store():
    return InMemoryVersionStore()


@pytest.fixture
def executor():
    return FakeExecutor()
