from datetime import datetime, timezone

import db
from engines import aggregation


def test_save_note_upserts(temp_db):
    first = db.save_note("u1", "p1", "use two pointers", updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    db.save_note("u1", "p1", "use a hash map")
    row = db.get_note("u1", "p1")
    assert row["content"] == "use a hash map"
    assert row["updated_at"] > first


def test_notes_are_per_user(temp_db):
    db.save_note("u1", "p1", "mine")
    db.save_note("u2", "p1", "theirs")
    assert db.get_notes("u1") == {"p1": "mine"}
    assert db.get_note("u3", "p1") is None


def test_get_notes_filters_by_problem(temp_db):
    db.save_note("u1", "p1", "a")
    db.save_note("u1", "p2", "b")
    assert db.get_notes("u1", ["p2", "p9"]) == {"p2": "b"}


def test_notes_do_not_count_as_progress(catalog, learner):
    db.save_note(learner.uid, catalog["problems"][0].id, "todo")
    (stats,) = aggregation.get_sheet_stats(learner.uid)
    assert stats.solved == 0
