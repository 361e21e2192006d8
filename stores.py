import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from enum import Enum

from insights import goal_ref_to_number
from models import Entry, Goal, GOAL_SLOTS, MIN_SCORE, MAX_SCORE
from repositories import RemoteStoreError

logger = logging.getLogger(__name__)

GOAL_PREVIEW_LENGTH = 24


class ValidationError(Exception):
    """User input was rejected before any remote call."""


class NotAuthenticatedError(Exception):
    """A mutation was attempted without a signed-in identity."""


def today_iso():
    """Today's local date as YYYY-MM-DD."""
    return date.today().isoformat()


def validate_score(score):
    """Returns the score as an int, or raises ValidationError unless it is a whole number in [1, 10]."""
    if score is None or isinstance(score, bool) or not isinstance(score, (int, float)):
        raise ValidationError(f"Enter a Progress Score {MIN_SCORE}–{MAX_SCORE}.")
    if not MIN_SCORE <= score <= MAX_SCORE or score != int(score):
        raise ValidationError(f"Enter a Progress Score {MIN_SCORE}–{MAX_SCORE}.")
    return int(score)


def _slot_index(position):
    if position not in GOAL_SLOTS:
        raise ValueError(f"Goal position must be one of {GOAL_SLOTS}, got {position!r}")
    return position - 1


# --- Goal Store ---

class GoalStore:
    """The three goal slots of the signed-in user."""

    def __init__(self, repository):
        self.repository = repository
        self.clear()

    def clear(self):
        self.titles = ["" for _ in GOAL_SLOTS]
        self.locked = [False for _ in GOAL_SLOTS]
        self.pending_unlock = None

    def slot(self, position):
        i = _slot_index(position)
        return {"title": self.titles[i], "locked": self.locked[i]}

    def load_goals(self, owner_id):
        goals = self.repository.list_for_owner(owner_id)
        self.clear()
        for goal in goals:
            if goal.position in GOAL_SLOTS:
                self.titles[goal.position - 1] = goal.title
                self.locked[goal.position - 1] = goal.locked
        return goals

    def set_title(self, position, title):
        """Local edit of an unlocked slot; locked slots keep their title."""
        i = _slot_index(position)
        if self.locked[i]:
            return False
        self.titles[i] = title
        return True

    def confirm_goal(self, owner_id, position, title=None):
        """Locks the slot with the given title. A blank title is ignored and returns False."""
        if not owner_id:
            raise NotAuthenticatedError("Please sign in first.")
        i = _slot_index(position)
        if title is None:
            title = self.titles[i]
        if not title or not title.strip():
            return False
        self.repository.upsert(Goal(owner_id=owner_id, title=title, position=position, locked=True))
        self.titles[i] = title
        self.locked[i] = True
        return True

    def request_unlock(self, position):
        """First step of an unlock; the UI asks the user to confirm."""
        i = _slot_index(position)
        if self.locked[i]:
            self.pending_unlock = position
        return self.pending_unlock

    def cancel_unlock(self):
        self.pending_unlock = None

    def confirm_unlock(self, owner_id):
        """Second step of an unlock: persists locked=False keeping the title."""
        if not owner_id:
            raise NotAuthenticatedError("Please sign in first.")
        position = self.pending_unlock
        if position is None:
            return False
        i = _slot_index(position)
        self.repository.upsert(Goal(owner_id=owner_id, title=self.titles[i] or "", position=position, locked=False))
        self.locked[i] = False
        self.pending_unlock = None
        return True

    def confirmed_goal_options(self):
        """(label, value) pairs for locked slots, e.g. ("Goal 1 (Read 12 books)", "Goal 1")."""
        options = []
        for position in GOAL_SLOTS:
            i = position - 1
            if not self.locked[i]:
                continue
            title = self.titles[i]
            preview = ""
            if title:
                ellipsis = "…" if len(title) > GOAL_PREVIEW_LENGTH else ""
                preview = f" ({title[:GOAL_PREVIEW_LENGTH]}{ellipsis})"
            options.append((f"Goal {position}{preview}", f"Goal {position}"))
        return options


# --- Entry Store ---

class EntryStore:
    """Reflection entries of the signed-in user, ascending by date."""

    def __init__(self, repository):
        self.repository = repository
        self.entries = []

    def clear(self):
        self.entries = []

    def load_entries(self, owner_id):
        self.entries = list(self.repository.list_for_owner(owner_id))
        return self.entries

    def save_entry(self, identity, goal_ref, date, progress_score,
                   q1="", q3="", highlights="", challenges="", experiment=""):
        if identity is None:
            raise NotAuthenticatedError("Please sign in first.")
        score = validate_score(progress_score)
        entry = Entry(
            owner_id=identity.id,
            owner_email=identity.email,
            goal_ref=goal_ref,
            date=date,
            progress_score=score,
            q1=q1,
            q3=q3,
            highlights=highlights or None,
            challenges=challenges or None,
            experiment=experiment or None,
        )
        saved = self.repository.insert(entry)
        # Appended locally, no re-fetch.
        self.entries = self.entries + [saved]
        return saved


def load_user_data(owner_id, goal_store, entry_store):
    """
    Loads goals and entries for the owner in parallel. If either load fails,
    both stores are left empty and the first failure is raised.
    """
    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [
            pool.submit(goal_store.load_goals, owner_id),
            pool.submit(entry_store.load_entries, owner_id),
        ]
    errors = [f.exception() for f in futures if f.exception() is not None]
    if errors:
        goal_store.clear()
        entry_store.clear()
        for error in errors:
            logger.warning("Loading data for %s failed: %s", owner_id, error)
        raise errors[0]

    goals, entries = (f.result() for f in futures)
    logger.info("Loaded %d goals and %d entries for %s", len(goals), len(entries), owner_id)
    return goals, entries


# --- Reflection Form ---

class FormState(Enum):
    EDITING = "editing"
    SUBMITTING = "submitting"


class FormOutcome(Enum):
    SAVED = "saved"
    VALIDATION_FAILED = "validation-failed"
    REMOTE_FAILED = "remote-failed"


class ReflectionForm:
    TEXT_FIELDS = ("q1", "q3", "highlights", "challenges", "experiment")

    def __init__(self, today=today_iso):
        self._today = today
        self.selected_goal = "Goal 1"
        self.state = FormState.EDITING
        self.outcome = None
        self.error = None
        self.reset()

    def reset(self):
        """Clears the fields; the goal selection is kept."""
        self.date = self._today()
        self.score = None
        for name in self.TEXT_FIELDS:
            setattr(self, name, "")

    def values(self):
        return {
            "goal_ref": goal_ref_to_number(self.selected_goal),
            "date": self.date,
            "progress_score": self.score,
            **{name: getattr(self, name) for name in self.TEXT_FIELDS},
        }

    def submit(self, entry_store, identity):
        """Saves the form through the entry store. Fields are cleared only on success."""
        self.state = FormState.SUBMITTING
        self.error = None
        try:
            saved = entry_store.save_entry(identity, **self.values())
        except (ValidationError, NotAuthenticatedError) as e:
            self.outcome = FormOutcome.VALIDATION_FAILED
            self.error = str(e)
            raise
        except RemoteStoreError as e:
            self.outcome = FormOutcome.REMOTE_FAILED
            self.error = str(e)
            raise
        finally:
            self.state = FormState.EDITING
        self.outcome = FormOutcome.SAVED
        self.reset()
        return saved
