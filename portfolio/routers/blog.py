import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from starlette import status

from portfolio import dependencies as deps
from portfolio.exceptions import (
    BlogError,
    NotFoundError,
    PermissionDeniedError,
    ReadError,
    StateError,
    SubmitInProgressError,
    ValidationError,
    WriteError,
)
from portfolio.schemas.blog import DraftForm, DraftUpdate, PostDetail, PostList, SubmitResult
from portfolio.security import get_settings
from portfolio.services.blog_controller import BlogController
from portfolio.services.image_service import inline_image
from portfolio.services.sessions import ControllerRegistry
from portfolio.settings import Settings

logger = logging.getLogger(__name__)

# Readable by anyone
router = APIRouter(prefix="/blog", tags=["blog"])
# Mutating routes; mounted behind the API key in main
author_router = APIRouter(prefix="/blog", tags=["blog-author"])
session_router = APIRouter(tags=["session"])

_STATUS_BY_ERROR = {
    ValidationError: 422,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    SubmitInProgressError: 409,
    StateError: 409,
    WriteError: 400,
    ReadError: 503,
}


def _http_error(error: BlogError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@router.get("", response_model=PostList)
def list_posts(controller: BlogController = Depends(deps.get_session_controller)):
    """Grid of post summaries, newest first."""
    return controller.list_view()


@router.get("/selection", response_model=PostDetail)
def get_selection(controller: BlogController = Depends(deps.get_session_controller)):
    try:
        return controller.detail_view()
    except BlogError as e:
        raise _http_error(e)


@router.delete("/selection", status_code=status.HTTP_204_NO_CONTENT)
def back_to_list(controller: BlogController = Depends(deps.get_session_controller)):
    controller.back_to_list()


@router.get("/posts/{post_id}", response_model=PostDetail)
def read_post(
    post_id: str,
    controller: BlogController = Depends(deps.get_session_controller),
):
    """Select a post and return its detail view."""
    try:
        controller.select_post(post_id)
        return controller.detail_view()
    except BlogError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error retrieving post {post_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve post")


@author_router.delete("/posts/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_post(
    post_id: str,
    controller: BlogController = Depends(deps.get_session_controller),
):
    try:
        controller.delete_post(post_id)
    except BlogError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error deleting post {post_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete post")


@author_router.post("/posts/{post_id}/editor", response_model=DraftForm)
def edit_post(
    post_id: str,
    controller: BlogController = Depends(deps.get_session_controller),
):
    try:
        controller.open_edit(post_id)
        return controller.form_view()
    except BlogError as e:
        raise _http_error(e)


@author_router.post("/editor", response_model=DraftForm)
def new_post(controller: BlogController = Depends(deps.get_session_controller)):
    try:
        controller.open_new_post()
        return controller.form_view()
    except BlogError as e:
        raise _http_error(e)


@author_router.get("/editor", response_model=DraftForm)
def get_editor(controller: BlogController = Depends(deps.get_session_controller)):
    return controller.form_view()


@author_router.patch("/editor", response_model=DraftForm)
def update_editor(
    update: DraftUpdate,
    controller: BlogController = Depends(deps.get_session_controller),
):
    fields = update.model_dump(exclude_unset=True)
    preview = fields.pop("preview", None)
    try:
        if fields:
            controller.update_draft(**fields)
        if preview is not None:
            controller.set_preview(preview)
        return controller.form_view()
    except BlogError as e:
        raise _http_error(e)


@author_router.post("/editor/image", response_model=DraftForm)
def upload_image(
    image: UploadFile = File(...),
    controller: BlogController = Depends(deps.get_session_controller),
    current_settings: Settings = Depends(get_settings),
):
    """Inline the picked file into the draft as embedded image data."""
    try:
        data_uri = inline_image(
            image.file.read(),
            image.filename or "",
            image.content_type,
            max_bytes=current_settings.MAX_IMAGE_BYTES,
        )
        controller.attach_image(data_uri)
        return controller.form_view()
    except BlogError as e:
        raise _http_error(e)


@author_router.post("/editor/submit", response_model=SubmitResult)
def submit_editor(controller: BlogController = Depends(deps.get_session_controller)):
    created = controller.editing_id is None
    try:
        post_id = controller.submit()
        return SubmitResult(id=post_id, created=created)
    except BlogError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error saving post: {e}")
        raise HTTPException(status_code=500, detail="Failed to save post")


@author_router.delete("/editor", status_code=status.HTTP_204_NO_CONTENT)
def cancel_editor(controller: BlogController = Depends(deps.get_session_controller)):
    try:
        controller.cancel()
    except BlogError as e:
        raise _http_error(e)


@session_router.delete("/session", status_code=status.HTTP_204_NO_CONTENT)
def end_session(
    request: Request,
    registry: ControllerRegistry = Depends(deps.get_registry),
    current_settings: Settings = Depends(get_settings),
):
    """Tear down the caller's controller and its live subscription."""
    registry.close(request.cookies.get(current_settings.SESSION_COOKIE))
