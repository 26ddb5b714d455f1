import logging
from typing import List, Optional

from schemas import ViewerSelection

from .errors import TopicListFetchError
from .session import StreamSession

logger = logging.getLogger(__name__)


class ControlSurface:
    """Topic, window size and auto-follow selections for one viewer.

    Topic and window-size changes are forwarded to the session; ``auto_follow``
    is only read by whatever draws the window.
    """

    def __init__(self, session: StreamSession, selection: Optional[ViewerSelection] = None):
        self.session = session
        self.selection = selection or ViewerSelection()
        self.topics: List[str] = []

    @property
    def topic(self) -> str:
        return self.selection.topic

    @property
    def window_size(self) -> int:
        return self.selection.window_size

    @property
    def auto_follow(self) -> bool:
        return self.selection.auto_follow

    def start(self) -> None:
        self.session.update(self.topic, self.window_size)

    def select_topic(self, topic: str) -> None:
        self._apply(topic=topic)

    def select_window_size(self, window_size: int) -> None:
        self._apply(window_size=window_size)

    def toggle_auto_follow(self) -> bool:
        self.selection = self.selection.model_copy(update={"auto_follow": not self.auto_follow})
        return self.auto_follow

    async def load_topics(self, lister) -> List[str]:
        try:
            self.topics = await lister.list_topics()
        except TopicListFetchError as exc:
            logger.error("Error fetching topics: %s", exc)
            self.topics = []
        return self.topics

    def _apply(self, **changes) -> None:
        # pydantic's ValidationError is a ValueError; the old selection stays
        selection = ViewerSelection(**{**self.selection.model_dump(), **changes})
        self.selection = selection
        self.session.update(selection.topic, selection.window_size)
