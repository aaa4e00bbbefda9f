import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

import pycouchdb
from pydantic import ValidationError as SchemaError

from portfolio.exceptions import ReadError, ValidationError, WriteError
from portfolio.models.post import Post, PostDocument, PostDraft, PostPatch

logger = logging.getLogger(__name__)

OnChange = Callable[[Sequence[Post]], None]

DESIGN_PREFIX = "_design/"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Subscription:
    """
    Handle for a live feed of post snapshots.
    Calling it stops further callbacks; calling it again is a no-op.
    """

    def __init__(self, stop_event: threading.Event):
        self._stop_event = stop_event
        self.thread: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return not self._stop_event.is_set()

    def __call__(self) -> None:
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        logger.info("Blog subscription cancelled")


class CouchPostsRepo:
    def __init__(
        self,
        client,
        *,
        clock: Callable[[], datetime] = utc_now,
        max_backoff: int = 60,
        initial_backoff: float = 1,
    ):
        self.client = client
        self.clock = clock
        self.max_backoff = max_backoff
        self.initial_backoff = initial_backoff

    @property
    def db(self):
        return self.client.database

    def create(self, draft: PostDraft) -> str:
        now = _to_wire(self.clock())
        doc = {
            "_id": uuid.uuid4().hex,
            "title": draft.title,
            "content": draft.content,
            "excerpt": draft.excerpt,
            "createdAt": now,
            "updatedAt": now,
        }
        # Only include image if it's present and not blank
        if draft.image and draft.image.strip():
            doc["image"] = draft.image

        _check_document(doc, verb="create")

        try:
            saved = self.db.save(doc)
        except Exception as e:
            logger.error(f"Error creating blog post: {e}")
            raise WriteError(f"Failed to create blog post: {e}") from e

        logger.info(f"Created blog post {saved['_id']}")
        return saved["_id"]

    def update(self, post_id: str, patch: PostPatch) -> None:
        fields = patch.model_dump(exclude_unset=True)
        doc = self._get_for_write(post_id, verb="update")

        for name in ("title", "content", "excerpt"):
            if fields.get(name) is not None:
                doc[name] = fields[name]

        if "image" in fields:
            image = fields["image"]
            if image and image.strip():
                doc["image"] = image
            else:
                # blank clears the cover image rather than storing ""
                doc.pop("image", None)

        doc["updatedAt"] = _to_wire(self._next_updated_at(doc.get("updatedAt")))
        _check_document(doc, verb="update")

        try:
            self.db.save(doc)
        except Exception as e:
            logger.error(f"Error updating blog post {post_id}: {e}")
            raise WriteError(f"Failed to update blog post: {e}") from e

        logger.info(f"Updated blog post {post_id} ({', '.join(sorted(fields)) or 'touch'})")

    def delete(self, post_id: str) -> None:
        if post_id.startswith(DESIGN_PREFIX):
            raise WriteError(f"Failed to delete blog post: {post_id} does not exist")
        try:
            self.db.delete(post_id)
        except pycouchdb.exceptions.NotFound as e:
            raise WriteError(
                f"Failed to delete blog post: {post_id} does not exist"
            ) from e
        except Exception as e:
            logger.error(f"Error deleting blog post {post_id}: {e}")
            raise WriteError(f"Failed to delete blog post: {e}") from e

        logger.info(f"Deleted blog post {post_id}")

    def list_all(self) -> List[Post]:
        try:
            rows = list(self.db.all(include_docs=True))
        except Exception as e:
            logger.error(f"Error fetching blog posts: {e}")
            raise ReadError(f"Failed to fetch blog posts: {e}") from e

        posts = []
        for row in rows:
            post = self._to_post(row.get("doc", row))
            if post:
                posts.append(post)

        posts.sort(key=lambda p: (p.createdAt, p.id), reverse=True)
        return posts

    def subscribe(self, on_change: OnChange) -> Subscription:
        """
        Push the full ordered snapshot now and again after every change to
        the collection. Transport failures push an empty list instead of raising.
        """
        stop_event = threading.Event()
        subscription = Subscription(stop_event)

        try:
            since = self.client.current_seq()
        except Exception as e:
            logger.warning(f"Could not read update_seq, following from now: {e}")
            since = "now"

        self._push_snapshot(on_change, stop_event)

        thread = threading.Thread(
            target=self._follow_changes,
            args=(on_change, stop_event, since),
            daemon=True,
            name="BlogsSubscription",
        )
        subscription.thread = thread
        thread.start()
        return subscription

    def _follow_changes(
        self, on_change: OnChange, stop_event: threading.Event, since: str
    ) -> None:
        backoff = self.initial_backoff

        while not stop_event.is_set():
            try:
                for change in self.client.changes(since=since, stop_event=stop_event):
                    if stop_event.is_set():
                        return
                    since = change.get("seq", change.get("last_seq", since))
                    backoff = self.initial_backoff  # reset after a delivered row

                    doc_id = change.get("id")
                    if not doc_id or doc_id.startswith(DESIGN_PREFIX):
                        continue
                    self._push_snapshot(on_change, stop_event)

            except Exception as e:
                logger.error(f"Blog subscription transport error: {e}")
                if not stop_event.is_set():
                    self._deliver(on_change, [], stop_event)

            # Reconnect with exponential backoff
            if not stop_event.is_set():
                logger.info(f"Reconnecting blog subscription in {backoff} seconds...")
                stop_event.wait(backoff)
                backoff = min(backoff * 2, self.max_backoff)

        logger.info("Blog subscription thread exited")

    def _push_snapshot(self, on_change: OnChange, stop_event: threading.Event) -> None:
        try:
            posts = self.list_all()
        except ReadError as e:
            logger.error(f"Blog subscription fell back to an empty list: {e}")
            posts = []
        self._deliver(on_change, posts, stop_event)

    @staticmethod
    def _deliver(on_change: OnChange, posts, stop_event: threading.Event) -> None:
        if stop_event.is_set():
            return
        try:
            on_change(posts)
        except Exception as e:
            logger.error(f"Error in blog subscription callback: {e}")

    def _get_for_write(self, post_id: str, *, verb: str) -> dict:
        if post_id.startswith(DESIGN_PREFIX):
            raise WriteError(f"Failed to {verb} blog post: {post_id} does not exist")
        try:
            return self.db.get(post_id)
        except pycouchdb.exceptions.NotFound as e:
            raise WriteError(
                f"Failed to {verb} blog post: {post_id} does not exist"
            ) from e
        except Exception as e:
            logger.error(f"Error loading blog post {post_id}: {e}")
            raise WriteError(f"Failed to {verb} blog post: {e}") from e

    def _next_updated_at(self, previous: Optional[str]) -> datetime:
        now = self.clock()
        last = _from_wire(previous)
        if last is not None and now <= last:
            return last + timedelta(microseconds=1)
        return now

    @staticmethod
    def _to_post(doc: dict) -> Optional[Post]:
        doc_id = doc.get("_id", "")
        if doc_id.startswith(DESIGN_PREFIX):
            return None
        try:
            return PostDocument.model_validate(doc).to_post()
        except SchemaError as e:
            logger.warning(f"Skipping malformed blog document {doc_id}: {e}")
            return None


def _to_wire(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _from_wire(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _check_document(doc: dict, *, verb: str) -> None:
    """Refuse to write a document that list_all would skip as malformed."""
    try:
        PostDocument.model_validate(doc)
    except SchemaError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise ValidationError(f"Failed to {verb} blog post: {problems}") from e
