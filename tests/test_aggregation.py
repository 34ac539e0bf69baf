from datetime import datetime, timezone

import pytest

from engines import aggregation, hierarchy, progress
from engines.aggregation import HierarchySnapshot, percent_complete
from engines.validation import NotFound
from schemas import Sheet


@pytest.mark.parametrize(
    "solved,total,expected",
    [(0, 0, 0), (0, 3, 0), (1, 3, 33), (2, 3, 67), (1, 2, 50), (1, 8, 13), (3, 3, 100)],
)
def test_percent_complete(solved, total, expected):
    assert percent_complete(solved, total) == expected


def test_bucket_skips_dangling_chains():
    snapshot = HierarchySnapshot(
        sub_to_topic={"s1": "t1", "s2": "t-missing"},
        topic_to_sheet={"t1": "sheet-1"},
        problem_to_sub={"p1": "s1", "p2": "s1", "p3": "s2", "p4": "s-missing"},
    )
    buckets = aggregation.bucket_by_sheet(snapshot, {"p1", "p3", "p4"})
    assert list(buckets) == ["sheet-1"]
    assert (buckets["sheet-1"].solved, buckets["sheet-1"].total) == (1, 2)


def test_sheet_without_problems_reports_zero():
    sheet = Sheet(id="empty", title="Empty")
    snapshot = HierarchySnapshot(sub_to_topic={}, topic_to_sheet={}, problem_to_sub={})
    (stats,) = aggregation.sheet_stats([sheet], snapshot, [])
    assert (stats.solved, stats.total, stats.percent) == (0, 0, 0)


def test_stats_match_structure_rollup(catalog, learner):
    p0, p1, _ = catalog["problems"]
    second_topic = hierarchy.create_child(catalog["sheet"].id, "Graphs")
    sub = hierarchy.create_child(second_topic.id, "BFS")
    extra = hierarchy.create_child(sub.id, "Rotting Oranges")
    for problem in (p0, p1, extra):
        progress.solve(learner.uid, problem.id)

    (stats,) = aggregation.get_sheet_stats(learner.uid)
    summary = aggregation.get_sheet_progress(catalog["sheet"].id, learner.uid)
    assert (stats.solved, stats.total) == (summary.solved, summary.total) == (3, 4)
    assert stats.percent == summary.percent == 75
    assert [(t.solved, t.total) for t in summary.topics] == [(2, 3), (1, 1)]
    flags = [p.solved for p in summary.topics[0].sub_patterns[0].problems]
    assert flags == [True, True, False]


def test_deleted_problems_are_excluded(catalog, learner):
    p0, p1, _ = catalog["problems"]
    progress.solve(learner.uid, p0.id)
    hierarchy.soft_delete(p0.id)
    (stats,) = aggregation.get_sheet_stats(learner.uid)
    assert (stats.solved, stats.total) == (0, 2)


def test_problems_under_deleted_ancestors_are_excluded(temp_db, learner):
    sheet = hierarchy.create_sheet("S")
    topic = hierarchy.create_child(sheet.id, "T")
    sub = hierarchy.create_child(topic.id, "SP")
    problem = hierarchy.create_child(sub.id, "P")
    progress.solve(learner.uid, problem.id)
    hierarchy.soft_delete(problem.id)
    hierarchy.soft_delete(sub.id)
    hierarchy.restore(problem.id)

    (stats,) = aggregation.get_sheet_stats(learner.uid)
    assert (stats.solved, stats.total) == (0, 0)
    summary = aggregation.get_sheet_progress(sheet.id, learner.uid)
    assert (summary.solved, summary.total) == (0, 0)


def test_deleted_sheets_are_not_reported(catalog, learner):
    hierarchy.soft_delete(catalog["sheet"].id)
    assert aggregation.get_sheet_stats(learner.uid) == []


def test_explicit_completion_set_overrides_profile(catalog):
    ids = [p.id for p in catalog["problems"][:1]]
    (stats,) = aggregation.get_sheet_stats("anyone", completed=ids)
    assert (stats.solved, stats.total, stats.percent) == (1, 3, 33)


def test_unknown_user_raises(catalog):
    with pytest.raises(NotFound):
        aggregation.get_sheet_stats("ghost")


def test_day_gap_scenario_subpattern_tally(catalog, learner):
    a, b, _ = catalog["problems"]
    progress.solve(learner.uid, a.id, now=datetime(2024, 1, 1, 12, tzinfo=timezone.utc))
    after = progress.solve(learner.uid, b.id, now=datetime(2024, 1, 3, 12, tzinfo=timezone.utc))
    assert (after.current_streak, after.max_streak) == (1, 1)

    summary = aggregation.get_sheet_progress(catalog["sheet"].id, learner.uid)
    sub = summary.topics[0].sub_patterns[0]
    assert (sub.solved, sub.total) == (2, 3)


def test_rollup_sums_match_at_every_level(catalog, learner):
    p0, _, p2 = catalog["problems"]
    extra_sub = hierarchy.create_child(catalog["topic"].id, "Sliding Window")
    w1 = hierarchy.create_child(extra_sub.id, "W1")
    hierarchy.create_child(extra_sub.id, "W2")
    for problem in (p0, p2, w1):
        progress.solve(learner.uid, problem.id)

    summary = aggregation.get_sheet_progress(catalog["sheet"].id, learner.uid)
    topic = summary.topics[0]
    assert [(s.solved, s.total) for s in topic.sub_patterns] == [(2, 3), (1, 2)]
    assert sum(s.solved for s in topic.sub_patterns) == topic.solved == summary.solved == 3
    assert sum(s.total for s in topic.sub_patterns) == topic.total == summary.total == 5
    (stats,) = aggregation.get_sheet_stats(learner.uid)
    assert (stats.solved, stats.total) == (3, 5)


def test_next_up_marks_first_unsolved_after_solved_prefix(catalog, learner):
    p0, p1, p2 = catalog["problems"]
    summary = aggregation.get_sheet_progress(catalog["sheet"].id, learner.uid)
    flags = [p.next_up for p in summary.topics[0].sub_patterns[0].problems]
    assert flags == [True, False, False]

    progress.solve(learner.uid, p0.id)
    progress.solve(learner.uid, p2.id)
    summary = aggregation.get_sheet_progress(catalog["sheet"].id, learner.uid)
    flags = [p.next_up for p in summary.topics[0].sub_patterns[0].problems]
    assert flags == [False, True, False]
