import pandas as pd
import pytest

from insights import entries_to_csv, goal_history, goal_ref_to_number, project_trend, trend_chart, trend_frame
from models import Entry


def make_entry(goal_ref, day, score):
    return Entry(owner_id="user-1", owner_email="ada@example.com", goal_ref=goal_ref, date=day, progress_score=score)


@pytest.mark.parametrize("label, expected", [
    ("Goal 1", 1),
    ("Goal 2", 2),
    ("Goal 3", 3),
    ("Goal 7", 3),
    ("Goal abc", 1),
    ("Goal 0", 1),
    ("Goal -4", 1),
    ("Goal", 1),
    ("", 1),
    (None, 1),
    ("Goal 1_0", 1),
    ("Goal inf", 1),
    ("Goal \u0662", 1),
    ("Goal 0x2", 2),
    ("Goal 0b11", 3),
    ("Goal 2.5", 2),
    ("Goal 1e1", 3),
    ("Goal .5e1", 3),
    ("Goal Infinity", 3),
    ("Goal -Infinity", 1),
])
def test_goal_ref_to_number(label, expected):
    assert goal_ref_to_number(label) == expected


def test_project_trend_filters_and_sorts():
    entries = [
        make_entry(1, "2024-01-01", 5),
        make_entry(2, "2024-01-02", 8),
        make_entry(1, "2023-12-01", 3),
    ]
    assert project_trend(entries, "Goal 1") == [("2023-12-01", 3), ("2024-01-01", 5)]


def test_project_trend_keeps_missing_scores_and_same_day_order():
    entries = [
        make_entry(2, "2024-02-01", None),
        make_entry(2, "2024-01-15", 6),
        make_entry(2, "2024-02-01", 9),
    ]
    assert project_trend(entries, "Goal 2") == [("2024-01-15", 6), ("2024-02-01", None), ("2024-02-01", 9)]


def test_project_trend_empty_for_unused_goal():
    assert project_trend([make_entry(1, "2024-01-01", 5)], "Goal 3") == []


def test_goal_history_newest_first():
    entries = [make_entry(1, "2024-01-01", 5), make_entry(1, "2024-03-01", 7), make_entry(2, "2024-02-01", 2)]
    assert [e.date for e in goal_history(entries, "Goal 1")] == ["2024-03-01", "2024-01-01"]


def test_trend_frame_and_chart():
    df = trend_frame([("2023-12-01", 3), ("2024-01-01", None)])

    assert list(df.columns) == ["date", "score"]
    assert df["date"].iloc[0] == pd.Timestamp("2023-12-01")
    assert df["score"].iloc[0] == 3
    assert pd.isna(df["score"].iloc[1])

    spec = trend_chart(df).to_dict()
    assert spec["encoding"]["y"]["scale"] == {"domain": [0, 10], "clamp": True}
    assert spec["encoding"]["x"]["field"] == "date"


def test_entries_to_csv_oldest_first():
    entries = [make_entry(2, "2024-02-01", 8), make_entry(1, "2024-01-01", 5)]

    text = entries_to_csv(entries).decode("utf-8-sig")
    lines = text.strip().splitlines()

    assert lines[0] == "date,goal_ref,progress_score,q1,q3,highlights,challenges,experiment,owner_email"
    assert lines[1].startswith("2024-01-01,1,5")
    assert lines[2].startswith("2024-02-01,2,8")


def test_entries_to_csv_without_entries_has_header_only():
    text = entries_to_csv([]).decode("utf-8-sig")
    assert text.strip().splitlines() == ["date,goal_ref,progress_score,q1,q3,highlights,challenges,experiment,owner_email"]
