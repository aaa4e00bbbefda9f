from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Post(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    content: str
    excerpt: str
    image: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime


class PostDraft(BaseModel):
    """Editable fields of a post, as typed into the create/edit form."""

    title: str = ""
    content: str = ""
    excerpt: str = ""
    image: Optional[str] = None

    @classmethod
    def from_post(cls, post: Post) -> "PostDraft":
        return cls(
            title=post.title,
            content=post.content,
            excerpt=post.excerpt,
            image=post.image,
        )

    def missing_fields(self) -> list[str]:
        return [
            name
            for name in ("title", "excerpt", "content")
            if not getattr(self, name).strip()
        ]


class PostPatch(BaseModel):
    """Partial update; only fields explicitly set are written."""

    title: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    image: Optional[str] = None


class PostDocument(BaseModel):
    """Shape of a stored blog document, checked before it becomes a Post."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(alias="_id", min_length=1)
    title: str = Field(min_length=1)
    content: str
    excerpt: str = Field(min_length=1)
    image: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime

    @field_validator("createdAt", "updatedAt")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("image")
    @classmethod
    def _blank_image_is_absent(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _created_before_updated(self) -> "PostDocument":
        if self.createdAt > self.updatedAt:
            raise ValueError("createdAt is later than updatedAt")
        return self

    def to_post(self) -> Post:
        return Post(
            id=self.id,
            title=self.title,
            content=self.content,
            excerpt=self.excerpt,
            image=self.image,
            createdAt=self.createdAt,
            updatedAt=self.updatedAt,
        )
