import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))
    monkeypatch.setenv("STREAK_TIMEZONE", "UTC")
    monkeypatch.delenv("ADMIN_EMAILS", raising=False)

    # Reset the connection pool for each test
    db._pool = db.SQLiteConnectionPool(str(db_path), max_connections=10)
    db.init()
    yield str(db_path)
    db._pool.close_all()


@pytest.fixture
def catalog(temp_db):
    """One sheet with a topic, a sub-pattern and three problems."""
    from engines import hierarchy

    sheet = hierarchy.create_sheet("Core", "demo")
    topic = hierarchy.create_child(sheet.id, "Arrays")
    sub = hierarchy.create_child(topic.id, "Two Pointers")
    problems = [
        hierarchy.create_child(sub.id, f"P{i}", url=f"https://example.com/{i}", platform="LeetCode")
        for i in range(3)
    ]
    return {"sheet": sheet, "topic": topic, "sub": sub, "problems": problems}


@pytest.fixture
def learner(temp_db):
    from engines import profiles

    return profiles.sign_in(
        "learner-1",
        email="learner@example.com",
        now=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc),
    )
