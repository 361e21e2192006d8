from dataclasses import dataclass, field, asdict
from typing import Optional

GOAL_SLOTS = (1, 2, 3)
MIN_SCORE = 1
MAX_SCORE = 10


@dataclass(frozen=True)
class Identity:
    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class Session:
    """An authenticated identity plus the tokens issued by Firebase Auth."""
    user: Identity
    id_token: str = ""
    refresh_token: str = ""


@dataclass
class Goal:
    owner_id: str
    title: str
    position: int
    locked: bool = False

    @property
    def doc_id(self):
        """Firestore document id; one goal per owner and slot."""
        return f"{self.owner_id}_{self.position}"

    def to_row(self):
        return asdict(self)

    @classmethod
    def from_row(cls, row):
        return cls(
            owner_id=row["owner_id"],
            title=row.get("title") or "",
            position=int(row["position"]),
            locked=bool(row.get("locked", False)),
        )


@dataclass
class Entry:
    owner_id: str
    owner_email: Optional[str]
    goal_ref: int
    date: str
    progress_score: Optional[int] = None
    q1: Optional[str] = None
    q3: Optional[str] = None
    highlights: Optional[str] = None
    challenges: Optional[str] = None
    experiment: Optional[str] = None
    id: Optional[str] = field(default=None, compare=False)

    def to_row(self):
        """Row written to the entries collection (the id is assigned by the store)."""
        row = asdict(self)
        row.pop("id")
        return row

    @classmethod
    def from_row(cls, row, entry_id=None):
        return cls(
            owner_id=row["owner_id"],
            owner_email=row.get("owner_email"),
            goal_ref=int(row["goal_ref"]),
            date=row["date"],
            progress_score=row.get("progress_score"),
            q1=row.get("q1"),
            q3=row.get("q3"),
            highlights=row.get("highlights"),
            challenges=row.get("challenges"),
            experiment=row.get("experiment"),
            id=entry_id if entry_id is not None else row.get("id"),
        )
