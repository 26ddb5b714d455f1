from pydantic import BaseModel, Field

from utilities import DEFAULT_TOPIC, DEFAULT_WINDOW_SIZE

class CreateTopicRequest(BaseModel):
    name: str

class ViewerSelection(BaseModel):
    """What the viewer is currently asked to show."""
    topic: str = DEFAULT_TOPIC
    window_size: int = Field(DEFAULT_WINDOW_SIZE, ge=1)
    auto_follow: bool = True
