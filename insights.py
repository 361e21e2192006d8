import math
import re

import altair as alt
import pandas as pd

from models import GOAL_SLOTS, MAX_SCORE

EXPORT_COLUMNS = [
    "date", "goal_ref", "progress_score", "q1", "q3",
    "highlights", "challenges", "experiment", "owner_email",
]


DECIMAL_NUMBER = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", re.ASCII)
PREFIXED_INTEGER = re.compile(r"0([xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)")


def parse_number(text):
    """
    Reads a numeric string the way a browser's Number() does: surrounding
    whitespace ignored, empty is 0, decimal or exponent notation, unsigned
    0x/0o/0b integers and a signed "Infinity". Anything else is NaN.
    """
    text = text.strip()
    if not text:
        return 0.0
    if DECIMAL_NUMBER.fullmatch(text):
        return float(text)
    if PREFIXED_INTEGER.fullmatch(text):
        try:
            return float(int(text, 0))
        except OverflowError:
            return math.inf
    if text in ("Infinity", "+Infinity"):
        return math.inf
    if text == "-Infinity":
        return -math.inf
    return math.nan


def goal_ref_to_number(ref):
    """Maps a label like "Goal 2" to its slot number, clamped to 1..3 (1 when unparsable)."""
    parts = (ref or "").split(" ")
    number = parse_number(parts[1]) if len(parts) > 1 else math.nan
    if not number or math.isnan(number):
        number = 1
    return int(max(GOAL_SLOTS[0], min(GOAL_SLOTS[-1], number)))


def project_trend(entries, selected_goal):
    """(date, score) points for one goal slot, oldest first. Score is None when absent."""
    ref = goal_ref_to_number(selected_goal)
    matching = sorted((e for e in entries if e.goal_ref == ref), key=lambda e: e.date)
    return [(e.date, e.progress_score) for e in matching]


def goal_history(entries, selected_goal):
    """Entries for one goal slot, newest first."""
    ref = goal_ref_to_number(selected_goal)
    return sorted((e for e in entries if e.goal_ref == ref), key=lambda e: e.date, reverse=True)


def trend_frame(points):
    df = pd.DataFrame(points, columns=["date", "score"])
    df["date"] = pd.to_datetime(df["date"])
    df["score"] = pd.to_numeric(df["score"])
    return df


def trend_chart(df, height=300):
    """Line chart of a trend frame on a fixed 0-10 axis."""
    return (
        alt.Chart(df)
        .mark_line(point=True)
        .encode(
            x=alt.X("date:T", title="Date"),
            y=alt.Y(
                "score:Q",
                title="Progress Score",
                scale=alt.Scale(domain=[0, MAX_SCORE], clamp=True),
                axis=alt.Axis(tickMinStep=1),
            ),
            tooltip=["date:T", "score:Q"],
        )
        .properties(height=height)
    )


def entries_to_csv(entries):
    """All reflections as CSV bytes, oldest first."""
    rows = [
        {column: getattr(e, column) for column in EXPORT_COLUMNS}
        for e in sorted(entries, key=lambda e: e.date)
    ]
    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    return df.to_csv(index=False).encode("utf-8-sig")
