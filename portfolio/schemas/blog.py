from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class PostSummary(BaseModel):
    id: str
    title: str
    excerpt: str
    image: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime
    date: str
    readingTime: str


class PostDetail(PostSummary):
    content: str  # sanitized markup


class PostList(BaseModel):
    posts: List[PostSummary] = Field(default_factory=list)
    isAuthor: bool = False


class DraftForm(BaseModel):
    mode: str
    editingId: Optional[str] = None
    title: str = ""
    excerpt: str = ""
    content: str = ""
    image: Optional[str] = None
    preview: bool = False
    previewHtml: Optional[str] = None
    isSubmitting: bool = False
    error: Optional[str] = None


class DraftUpdate(BaseModel):
    title: Optional[str] = None
    excerpt: Optional[str] = None
    content: Optional[str] = None
    image: Optional[str] = None
    preview: Optional[bool] = None


class SubmitResult(BaseModel):
    id: str
    created: bool
