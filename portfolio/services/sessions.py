import logging
import secrets
import threading
import time
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from portfolio.models.post import Post, PostDraft, PostPatch
from portfolio.security import Identity
from portfolio.services.blog_controller import BlogController

logger = logging.getLogger(__name__)


class SharedPostsFeed:
    """
    Repository facade that shares one live subscription between many
    listeners. The store sees a single ``_changes`` follower no matter how
    many sessions are open; writes and reads pass straight through.
    """

    def __init__(self, repo):
        self.repo = repo
        self._listeners: Dict[int, Callable[[Sequence[Post]], None]] = {}
        self._latest: Optional[List[Post]] = None
        self._upstream = None
        self._generation = 0
        self._next_token = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._listeners)

    @property
    def connected(self) -> bool:
        return self._upstream is not None

    def create(self, draft: PostDraft) -> str:
        return self.repo.create(draft)

    def update(self, post_id: str, patch: PostPatch) -> None:
        self.repo.update(post_id, patch)

    def delete(self, post_id: str) -> None:
        self.repo.delete(post_id)

    def list_all(self) -> List[Post]:
        return self.repo.list_all()

    def subscribe(self, on_change: Callable[[Sequence[Post]], None]):
        # the lock also serializes deliveries, so a new listener never sees
        # its first snapshot after a newer broadcast
        with self._lock:
            token = self._next_token
            self._next_token += 1
            if self._upstream is None:
                self._latest = None
                self._generation += 1
                self._upstream = self.repo.subscribe(
                    partial(self._broadcast, generation=self._generation)
                )
                logger.info("Opened shared blog subscription")
            self._listeners[token] = on_change
            if self._latest is not None:
                self._notify(on_change, self._latest)

        def unsubscribe() -> None:
            self._remove(token)

        return unsubscribe

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()
            upstream, self._upstream = self._upstream, None
            self._generation += 1
            self._latest = None
        if upstream is not None:
            upstream()
            logger.info("Closed shared blog subscription")

    def _remove(self, token: int) -> None:
        with self._lock:
            if self._listeners.pop(token, None) is None:
                return
            if self._listeners:
                return
            upstream, self._upstream = self._upstream, None
            self._generation += 1
            self._latest = None
        # last listener gone; release the store connection until next time
        if upstream is not None:
            upstream()
            logger.info("Closed shared blog subscription")

    def _broadcast(self, posts: Sequence[Post], *, generation: int) -> None:
        with self._lock:
            # late push from a subscription that has already been released
            if generation != self._generation:
                return
            self._latest = list(posts)
            listeners = list(self._listeners.values())
            for on_change in listeners:
                self._notify(on_change, self._latest)

    @staticmethod
    def _notify(on_change, posts: List[Post]) -> None:
        try:
            on_change(list(posts))
        except Exception as e:
            logger.error(f"Error in blog session callback: {e}")


class ControllerRegistry:
    """
    One BlogController per browser session. Idle sessions are closed
    (and their subscriptions cancelled) once they outlive ``ttl_seconds``.
    All controllers listen on one SharedPostsFeed over ``repo``.
    """

    def __init__(
        self,
        repo,
        *,
        ttl_seconds: float = 1800,
        clock: Callable[[], float] = time.monotonic,
        controller_factory: Callable[..., BlogController] = BlogController,
    ):
        self.repo = repo
        self.feed = SharedPostsFeed(repo)
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.controller_factory = controller_factory
        self._sessions: Dict[str, Tuple[BlogController, float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get_or_create(
        self, session_id: Optional[str], identity: Identity
    ) -> Tuple[str, BlogController]:
        now = self.clock()
        self._prune(now)

        with self._lock:
            entry = self._sessions.get(session_id) if session_id else None
            if entry is None:
                session_id = secrets.token_urlsafe(24)
                controller = self.controller_factory(self.feed, identity)
                logger.info("Opening blog session")
            else:
                controller = entry[0]
            controller.identity = identity
            self._sessions[session_id] = (controller, now)

        if entry is None:
            controller.open()
        return session_id, controller

    def close(self, session_id: Optional[str]) -> bool:
        with self._lock:
            entry = self._sessions.pop(session_id, None) if session_id else None
        if entry is None:
            return False
        entry[0].close()
        logger.info("Closed blog session")
        return True

    def close_all(self) -> None:
        with self._lock:
            entries = list(self._sessions.values())
            self._sessions.clear()
        for controller, _ in entries:
            controller.close()
        self.feed.close()
        logger.info(f"Closed {len(entries)} blog sessions")

    def _prune(self, now: float) -> None:
        with self._lock:
            stale_keys = [
                key
                for key, (_, last_seen) in self._sessions.items()
                if now - last_seen >= self.ttl_seconds
            ]
            stale = [self._sessions.pop(key) for key in stale_keys]
        for controller, _ in stale:
            controller.close()
        if stale:
            logger.info(f"Expired {len(stale)} idle blog sessions")
