import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("SITE_URL", "https://www.example.com")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("OPTIONS_DB_PATH", str(Path(tempfile.mkdtemp()) / "formblock-test.db"))
os.environ.setdefault("THEME_COLOR_PALETTE", '[{"slug": "primary", "color": "#ff0000"}]')


class InMemoryOptionsDatabase:
    """Stand-in for the SQLite wrapper that understands the option queries."""

    def __init__(self, rows: dict[str, str] | None = None) -> None:
        self.rows: dict[str, str] = dict(rows or {})
        self.statements: list[str] = []

    def is_connected(self) -> bool:
        return True

    async def fetch_one(self, sql, params=None):
        self.statements.append(sql)
        name = params[0]
        if name not in self.rows:
            return None
        return {"value": self.rows[name]}

    async def fetch_all(self, sql, params=None):
        self.statements.append(sql)
        return [{"name": name, "value": self.rows[name]} for name in params if name in self.rows]

    async def execute(self, sql, params=None):
        self.statements.append(sql)
        statement = sql.strip().upper()
        if statement.startswith("INSERT"):
            name, value = params
            self.rows[name] = value
        elif statement.startswith("DELETE"):
            for name in params:
                self.rows.pop(name, None)


@pytest.fixture
def options_db(monkeypatch):
    from formblock.repositories import options as options_repo

    database = InMemoryOptionsDatabase()
    monkeypatch.setattr(options_repo, "db", database)
    return database
