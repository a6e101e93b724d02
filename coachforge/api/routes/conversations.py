"""Feedback on assistant messages."""
from fastapi import APIRouter, Depends, status

from coachforge.api.dependencies import get_container, get_user_id
from coachforge.core.exceptions import NotFoundError
from coachforge.schemas.feedback import FeedbackCreate, FeedbackResponse
from coachforge.services.container import ServiceContainer

router = APIRouter()


@router.post(
    "/{message_id}/feedback",
    response_model=FeedbackResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_feedback(
    message_id: str,
    payload: FeedbackCreate,
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """Rate an assistant message. Low-rated messages stop being retrieved as context."""
    message = await container.conversations.get(message_id)
    if message is None or message.role != "assistant":
        raise NotFoundError("message", f"Message {message_id} not found")
    feedback_id = await container.conversations.add_feedback(
        message_id=message_id,
        user_id=user_id,
        **payload.model_dump(),
    )
    return FeedbackResponse(id=feedback_id, message_id=message_id)
