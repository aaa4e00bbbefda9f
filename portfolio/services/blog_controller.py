import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple

from portfolio.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    StateError,
    SubmitInProgressError,
    ValidationError,
)
from portfolio.models.post import Post, PostDraft, PostPatch
from portfolio.repos.posts_repo import utc_now
from portfolio.schemas.blog import DraftForm, PostDetail, PostList, PostSummary
from portfolio.security import ANONYMOUS, Identity
from portfolio.services.content_sanitizer import sanitize
from portfolio.utils import calculate_reading_time, format_date, format_reading_time

logger = logging.getLogger(__name__)

DRAFT_FIELDS = ("title", "excerpt", "content", "image")


class EditorMode(str, Enum):
    IDLE = "idle"
    DRAFTING = "drafting"
    SUBMITTING = "submitting"


class BlogController:
    """
    State behind the blog page: the live list of posts, the post under
    detail view, and the create/edit form.

    ``posts`` is only ever replaced by subscription pushes. Writes go through
    the repository and come back as the next push.
    """

    def __init__(
        self,
        repo,
        identity: Identity = ANONYMOUS,
        *,
        sanitizer: Callable[[str], str] = sanitize,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.identity = identity
        self.sanitizer = sanitizer
        self.clock = clock

        self.posts: Tuple[Post, ...] = ()
        self.selected_post: Optional[Post] = None
        self.draft: Optional[PostDraft] = None
        self.editing_id: Optional[str] = None
        self.mode = EditorMode.IDLE
        self.is_submitting = False
        self.preview = False
        self.error: Optional[str] = None

        self._subscription = None
        self._closed = False
        self._lock = threading.RLock()

    # -- lifecycle -----------------------------------------------------

    def open(self) -> "BlogController":
        with self._lock:
            if self._closed:
                raise StateError("Controller has been closed")
            if self._subscription is None:
                self._subscription = self.repo.subscribe(self._on_posts)
        return self

    def close(self) -> None:
        with self._lock:
            self._closed = True
            subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription()

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_posts(self, posts: Sequence[Post]) -> None:
        with self._lock:
            if self._closed:
                return
            self.posts = tuple(posts)
            if self.selected_post is not None:
                fresh = self._find(self.selected_post.id)
                if fresh is not None:
                    self.selected_post = fresh

    # -- detail view ---------------------------------------------------

    def select_post(self, post_id: str) -> Post:
        with self._lock:
            post = self._find(post_id)
            if post is None:
                raise NotFoundError(f"Post {post_id} not found")
            self.selected_post = post
            return post

    def back_to_list(self) -> None:
        with self._lock:
            self.selected_post = None

    def delete_post(self, post_id: str) -> None:
        self._require_author("delete")
        with self._lock:
            if self.is_submitting:
                raise SubmitInProgressError("Wait for the current save to finish")

        try:
            self.repo.delete(post_id)
        except Exception as e:
            with self._lock:
                self.error = str(e)
            logger.warning(f"Delete of post {post_id} failed: {e}")
            raise

        with self._lock:
            self.error = None
            if self.selected_post is not None and self.selected_post.id == post_id:
                self.selected_post = None

    # -- create/edit form ----------------------------------------------

    def open_new_post(self) -> None:
        self._require_author("create")
        with self._lock:
            self._require_idle()
            self._start_draft(PostDraft(), editing_id=None)

    def open_edit(self, post_id: str) -> None:
        self._require_author("edit")
        with self._lock:
            self._require_idle()
            post = self._find(post_id)
            if post is None and self.selected_post and self.selected_post.id == post_id:
                post = self.selected_post
            if post is None:
                raise NotFoundError(f"Post {post_id} not found")
            self._start_draft(PostDraft.from_post(post), editing_id=post.id)

    def update_draft(self, **fields) -> PostDraft:
        unknown = set(fields) - set(DRAFT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown draft fields: {', '.join(sorted(unknown))}")

        with self._lock:
            self._require_drafting()
            if "image" in fields and not (fields["image"] or "").strip():
                fields["image"] = None
            self.draft = self.draft.model_copy(update=fields)
            return self.draft

    def attach_image(self, data_uri: str) -> PostDraft:
        return self.update_draft(image=data_uri)

    def set_preview(self, enabled: bool) -> None:
        with self._lock:
            self._require_drafting()
            self.preview = enabled

    def cancel(self) -> None:
        with self._lock:
            if self.mode is EditorMode.SUBMITTING:
                raise SubmitInProgressError("Wait for the current save to finish")
            self._reset_editor()

    def submit(self) -> str:
        """
        Save the draft as a new post or as an edit of ``editing_id``.
        On failure the draft is kept so the user can retry or cancel.
        """
        with self._lock:
            if self.is_submitting:
                raise SubmitInProgressError("A submission is already in progress")
            if self.mode is not EditorMode.DRAFTING:
                raise StateError("There is no draft to submit")

        self._require_author("create" if self.editing_id is None else "edit")

        with self._lock:
            if self.is_submitting:
                raise SubmitInProgressError("A submission is already in progress")
            missing = self.draft.missing_fields()
            if missing:
                self.error = f"Please fill in all required fields: {', '.join(missing)}"
                raise ValidationError(self.error)

            draft = self.draft.model_copy()
            editing_id = self.editing_id
            self.is_submitting = True
            self.mode = EditorMode.SUBMITTING
            self.error = None

        try:
            if editing_id is None:
                post_id = self.repo.create(draft)
            else:
                self.repo.update(
                    editing_id,
                    PostPatch(
                        title=draft.title,
                        content=draft.content,
                        excerpt=draft.excerpt,
                        image=draft.image or "",
                    ),
                )
                post_id = editing_id
        except Exception as e:
            with self._lock:
                self.is_submitting = False
                self.mode = EditorMode.DRAFTING
                self.error = str(e)
            logger.warning(f"Saving blog post failed: {e}")
            raise

        with self._lock:
            if (
                editing_id is not None
                and self.selected_post is not None
                and self.selected_post.id == editing_id
            ):
                self.selected_post = self.selected_post.model_copy(
                    update={
                        "title": draft.title,
                        "content": draft.content,
                        "excerpt": draft.excerpt,
                        "image": draft.image,
                        # the stored value arrives with the next push
                        "updatedAt": max(self.clock(), self.selected_post.updatedAt),
                    }
                )
            self._reset_editor()
        return post_id

    # -- views ---------------------------------------------------------

    def list_view(self) -> PostList:
        with self._lock:
            posts = self.posts
        return PostList(
            posts=[render_summary(post) for post in posts],
            isAuthor=self.identity.is_privileged_author,
        )

    def detail_view(self) -> PostDetail:
        with self._lock:
            post = self.selected_post
        if post is None:
            raise NotFoundError("No post selected")
        return render_detail(post, self.sanitizer)

    def form_view(self) -> DraftForm:
        with self._lock:
            draft = self.draft or PostDraft()
            preview_html = self.sanitizer(draft.content) if self.preview else None
            return DraftForm(
                mode=self.mode.value,
                editingId=self.editing_id,
                title=draft.title,
                excerpt=draft.excerpt,
                content=draft.content,
                image=draft.image,
                preview=self.preview,
                previewHtml=preview_html,
                isSubmitting=self.is_submitting,
                error=self.error,
            )

    # -- helpers -------------------------------------------------------

    def _find(self, post_id: str) -> Optional[Post]:
        return next((post for post in self.posts if post.id == post_id), None)

    def _require_author(self, action: str) -> None:
        if not self.identity.is_privileged_author:
            message = f"Only the blog author can {action} posts"
            with self._lock:
                self.error = message
            raise PermissionDeniedError(message)

    def _require_idle(self) -> None:
        if self.mode is not EditorMode.IDLE:
            raise StateError("Finish or cancel the current draft first")

    def _require_drafting(self) -> None:
        if self.mode is EditorMode.SUBMITTING:
            raise SubmitInProgressError("Wait for the current save to finish")
        if self.mode is not EditorMode.DRAFTING:
            raise StateError("There is no open draft")

    def _start_draft(self, draft: PostDraft, *, editing_id: Optional[str]) -> None:
        self.draft = draft
        self.editing_id = editing_id
        self.mode = EditorMode.DRAFTING
        self.preview = False
        self.error = None

    def _reset_editor(self) -> None:
        self.draft = None
        self.editing_id = None
        self.mode = EditorMode.IDLE
        self.is_submitting = False
        self.preview = False


def render_summary(post: Post) -> PostSummary:
    return PostSummary(
        id=post.id,
        title=post.title,
        excerpt=post.excerpt,
        image=post.image,
        createdAt=post.createdAt,
        updatedAt=post.updatedAt,
        date=format_date(post.createdAt),
        readingTime=format_reading_time(calculate_reading_time(post.content)),
    )


def render_detail(post: Post, sanitizer: Callable[[str], str] = sanitize) -> PostDetail:
    summary = render_summary(post)
    return PostDetail(**summary.model_dump(), content=sanitizer(post.content))
