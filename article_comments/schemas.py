from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from article_comments.models import CommentStatus

COMMENT_MIN_LENGTH = 3
COMMENT_MAX_LENGTH = 1000


# --- Comment ---

class CommentCreate(BaseModel):
    content: str = Field(min_length=COMMENT_MIN_LENGTH, max_length=COMMENT_MAX_LENGTH)

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, value):
        # Length limits apply to the trimmed text ("   " is empty).
        return value.strip() if isinstance(value, str) else value


class CommentResponse(BaseModel):
    id: str
    article_id: int
    user_id: int
    content: str
    status: CommentStatus
    created_at: datetime
    updated_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class CommentAccepted(BaseModel):
    comment_id: str
    status: CommentStatus = CommentStatus.PENDING
    message: str = "Comment queued for moderation"


# --- Article ---

class ArticleCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    body: str = Field(min_length=1)


class ArticleResponse(BaseModel):
    id: int
    title: str
    body: str
    user_id: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# --- Pagination ---

class PageMeta(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int


class CommentPage(BaseModel):
    items: list[CommentResponse]
    meta: PageMeta


class ArticlePage(BaseModel):
    items: list[ArticleResponse]
    meta: PageMeta


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_articles: int
    comments_by_status: dict[str, int]
    cache_info: dict = {}
    queue_info: dict = {}
