import logging
from abc import ABC, abstractmethod
from itertools import count

from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from models import Entry, Goal

logger = logging.getLogger(__name__)

# Firestore API failures and credential failures (e.g. RefreshError on token fetch).
REMOTE_ERRORS = (google_exceptions.GoogleAPIError, google_auth_exceptions.GoogleAuthError)


class RemoteStoreError(Exception):
    """A read or write against the remote store failed."""


# --- Repository contracts ---

class GoalRepository(ABC):
    @abstractmethod
    def list_for_owner(self, owner_id):
        """Returns the owner's goals ordered by position."""
        pass

    @abstractmethod
    def upsert(self, goal):
        """Creates or replaces the goal stored for (owner_id, position)."""
        pass


class EntryRepository(ABC):
    @abstractmethod
    def list_for_owner(self, owner_id):
        """Returns the owner's entries ordered by ascending date."""
        pass

    @abstractmethod
    def insert(self, entry):
        """Stores a new entry and returns it with the id assigned by the store."""
        pass


def sort_by_date(entries):
    # Stable, so entries sharing a date keep their stored order.
    return sorted(entries, key=lambda e: e.date)


# --- Firestore implementations ---

class FirestoreGoalRepository(GoalRepository):
    def __init__(self, collection_ref):
        self.collection_ref = collection_ref

    def list_for_owner(self, owner_id):
        try:
            docs = self.collection_ref.where(filter=FieldFilter("owner_id", "==", owner_id)).stream()
            goals = [Goal.from_row(doc.to_dict()) for doc in docs]
        except REMOTE_ERRORS as e:
            logger.warning("Loading goals for %s failed: %s", owner_id, e)
            raise RemoteStoreError(f"Failed to load goals: {e}") from e
        goals.sort(key=lambda g: g.position)
        return goals

    def upsert(self, goal):
        try:
            self.collection_ref.document(goal.doc_id).set(goal.to_row())
        except REMOTE_ERRORS as e:
            logger.warning("Saving goal %s failed: %s", goal.doc_id, e)
            raise RemoteStoreError(f"Failed to save goal: {e}") from e
        return goal


class FirestoreEntryRepository(EntryRepository):
    def __init__(self, collection_ref):
        self.collection_ref = collection_ref

    def list_for_owner(self, owner_id):
        # Sorted here rather than with order_by so no composite index is needed.
        try:
            docs = self.collection_ref.where(filter=FieldFilter("owner_id", "==", owner_id)).stream()
            entries = [Entry.from_row(doc.to_dict(), entry_id=doc.id) for doc in docs]
        except REMOTE_ERRORS as e:
            logger.warning("Loading entries for %s failed: %s", owner_id, e)
            raise RemoteStoreError(f"Failed to load entries: {e}") from e
        return sort_by_date(entries)

    def insert(self, entry):
        try:
            _, doc_ref = self.collection_ref.add(entry.to_row())
        except REMOTE_ERRORS as e:
            logger.warning("Saving entry for %s failed: %s", entry.owner_id, e)
            raise RemoteStoreError(f"Failed to save entry: {e}") from e
        return Entry.from_row(entry.to_row(), entry_id=doc_ref.id)


# --- In-memory implementations (tests, local runs without Firebase) ---

class InMemoryGoalRepository(GoalRepository):
    def __init__(self):
        self.rows = {}
        self.fail_reads = False
        self.fail_writes = False

    def list_for_owner(self, owner_id):
        if self.fail_reads:
            raise RemoteStoreError("Failed to load goals: store unavailable")
        goals = [Goal.from_row(row) for row in self.rows.values() if row["owner_id"] == owner_id]
        goals.sort(key=lambda g: g.position)
        return goals

    def upsert(self, goal):
        if self.fail_writes:
            raise RemoteStoreError("Failed to save goal: store unavailable")
        self.rows[goal.doc_id] = goal.to_row()
        return goal


class InMemoryEntryRepository(EntryRepository):
    def __init__(self):
        self.rows = []
        self.fail_reads = False
        self.fail_writes = False
        self.insert_calls = 0
        self._ids = count(1)

    def list_for_owner(self, owner_id):
        if self.fail_reads:
            raise RemoteStoreError("Failed to load entries: store unavailable")
        return sort_by_date(Entry.from_row(row) for row in self.rows if row["owner_id"] == owner_id)

    def insert(self, entry):
        self.insert_calls += 1
        if self.fail_writes:
            raise RemoteStoreError("Failed to save entry: store unavailable")
        row = entry.to_row()
        row["id"] = str(next(self._ids))
        self.rows.append(row)
        return Entry.from_row(row)
