"""Schemas for ratings on assistant messages."""
from pydantic import BaseModel, Field, model_validator


class FeedbackCreate(BaseModel):
    accuracy_rating: int | None = Field(None, ge=1, le=5)
    relevance_rating: int | None = Field(None, ge=1, le=5)
    helpfulness_rating: int | None = Field(None, ge=1, le=5)
    comment: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def require_content(self) -> "FeedbackCreate":
        if (
            self.accuracy_rating is None
            and self.relevance_rating is None
            and self.helpfulness_rating is None
            and not self.comment
        ):
            raise ValueError("Provide at least one rating or a comment")
        return self


class FeedbackResponse(BaseModel):
    id: str
    message_id: str
