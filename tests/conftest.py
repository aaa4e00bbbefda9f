import copy
import threading
import uuid
from datetime import datetime, timedelta, timezone

import pycouchdb
import pytest

from portfolio.models.post import Post, PostDraft
from portfolio.repos.posts_repo import CouchPostsRepo
from portfolio.security import Identity, CurrentUser

AUTHOR = Identity(user=CurrentUser(email="author@example.com"), is_privileged_author=True)
READER = Identity(user=CurrentUser(email="reader@example.com"))

T0 = datetime(2025, 1, 5, 10, 0, tzinfo=timezone.utc)


class FakeCouchDB:
    """
    Minimal in-memory stand-in for a pycouchdb Database.
    Every write is appended to ``log`` the way CouchDB records _changes rows.
    Set ``fail_writes`` / ``fail_reads`` to an exception to simulate rejections.
    """

    def __init__(self, docs=None):
        self.docs = {}
        self.log = []
        self.changed = threading.Condition()
        self.fail_writes = None
        self.fail_reads = None
        for doc in docs or []:
            self.docs[doc["_id"]] = copy.deepcopy(doc)

    def save(self, doc: dict) -> dict:
        if self.fail_writes:
            raise self.fail_writes
        doc = copy.deepcopy(doc)
        doc_id = doc.setdefault("_id", uuid.uuid4().hex)
        current = self.docs.get(doc_id)
        if current is not None and current.get("_rev") != doc.get("_rev"):
            raise pycouchdb.exceptions.Conflict(doc_id)
        generation = int(current["_rev"].split("-")[0]) + 1 if current else 1
        doc["_rev"] = f"{generation}-{uuid.uuid4().hex[:8]}"
        self.docs[doc_id] = doc
        self._record(doc_id)
        return copy.deepcopy(doc)

    def get(self, doc_id: str) -> dict:
        if self.fail_reads:
            raise self.fail_reads
        if doc_id not in self.docs:
            raise pycouchdb.exceptions.NotFound(doc_id)
        return copy.deepcopy(self.docs[doc_id])

    def delete(self, doc_id: str) -> None:
        if self.fail_writes:
            raise self.fail_writes
        if doc_id not in self.docs:
            raise pycouchdb.exceptions.NotFound(doc_id)
        del self.docs[doc_id]
        self._record(doc_id, deleted=True)

    def all(self, include_docs: bool = True):
        if self.fail_reads:
            raise self.fail_reads
        return [
            {"id": doc_id, "key": doc_id, "doc": copy.deepcopy(doc)}
            for doc_id, doc in self.docs.items()
        ]

    def config(self) -> dict:
        return {"db_name": "blogs", "update_seq": str(len(self.log))}

    def _record(self, doc_id: str, deleted: bool = False) -> None:
        with self.changed:
            change = {"seq": str(len(self.log) + 1), "id": doc_id}
            if deleted:
                change["deleted"] = True
            self.log.append(change)
            self.changed.notify_all()


class FakeCouchClient:
    """
    Stand-in for CouchClient. ``changes`` replays the database log from
    ``since`` and then waits for new rows until the stop event is set.
    Exceptions queued in ``connect_errors`` are raised on the next connect.
    """

    def __init__(self, database: FakeCouchDB = None):
        self.database = database or FakeCouchDB()
        self.connect_errors = []
        self.connects = 0

    def current_seq(self) -> str:
        return self.database.config()["update_seq"]

    def ping(self) -> bool:
        return True

    def changes(self, since="now", stop_event=None):
        self.connects += 1
        if self.connect_errors:
            raise self.connect_errors.pop(0)

        db = self.database
        position = len(db.log) if since == "now" else int(since)
        while stop_event is None or not stop_event.is_set():
            with db.changed:
                if position >= len(db.log):
                    db.changed.wait(timeout=0.02)
                pending = db.log[position:]
                position = len(db.log)
            for change in pending:
                yield dict(change)


class SnapshotRecorder:
    """Callable subscription callback that records every pushed snapshot."""

    def __init__(self):
        self.snapshots = []
        self._cond = threading.Condition()

    def __call__(self, posts):
        with self._cond:
            self.snapshots.append(list(posts))
            self._cond.notify_all()

    def wait_for(self, count: int, timeout: float = 2.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self.snapshots) >= count, timeout)

    @property
    def latest(self):
        return self.snapshots[-1]


class StepClock:
    """Returns start, start+step, start+2*step, ... on successive calls."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


class FakeRepo:
    """
    Repository stand-in for controller tests; pushes are fired by hand.
    """

    def __init__(self, posts=()):
        self.posts = list(posts)
        self.calls = []
        self.fail_with = None
        self.on_change = None
        self.unsubscribe_calls = 0
        self.block = None  # threading.Event; writes wait on it when set

    def subscribe(self, on_change):
        self.calls.append(("subscribe",))
        self.on_change = on_change
        on_change(list(self.posts))

        def unsubscribe():
            self.unsubscribe_calls += 1

        return unsubscribe

    def push(self, posts):
        self.posts = list(posts)
        self.on_change(list(posts))

    def _write(self, *call):
        self.calls.append(call)
        if self.block is not None:
            self.block.wait(timeout=2)
        if self.fail_with:
            raise self.fail_with

    def create(self, draft):
        self._write("create", draft)
        return "new-id"

    def update(self, post_id, patch):
        self._write("update", post_id, patch)

    def delete(self, post_id):
        self._write("delete", post_id)

    def writes(self):
        return [call for call in self.calls if call[0] != "subscribe"]


def make_post(post_id="p1", created=T0, **overrides) -> Post:
    values = {
        "id": post_id,
        "title": f"Title {post_id}",
        "content": "<p>Some content here</p>",
        "excerpt": f"Excerpt {post_id}",
        "image": None,
        "createdAt": created,
        "updatedAt": created,
    }
    values.update(overrides)
    return Post(**values)


def make_doc(doc_id="p1", created=T0, **overrides) -> dict:
    doc = {
        "_id": doc_id,
        "_rev": "1-abc",
        "title": f"Title {doc_id}",
        "content": "<p>Some content here</p>",
        "excerpt": f"Excerpt {doc_id}",
        "createdAt": created.isoformat(),
        "updatedAt": created.isoformat(),
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def couch_client():
    return FakeCouchClient()


@pytest.fixture
def repo(couch_client):
    return CouchPostsRepo(couch_client, clock=StepClock(), initial_backoff=0.01)


@pytest.fixture
def draft():
    return PostDraft(title="Hello", excerpt="Hi", content="<p>world</p>")
