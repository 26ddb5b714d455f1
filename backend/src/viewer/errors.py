from typing import Optional


class ViewerError(Exception):
    """Base class for viewer-side failures. None of them are fatal to the viewer."""


class TopicListFetchError(ViewerError):
    pass


class SubscriptionDeliveryError(ViewerError):
    """The feed for ``topic`` failed; the session that owned it is over."""

    def __init__(self, topic: Optional[str], message: str):
        super().__init__(message)
        self.topic = topic
