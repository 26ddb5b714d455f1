from .controls import ControlSurface  # noqa: F401
from .errors import SubscriptionDeliveryError, TopicListFetchError, ViewerError  # noqa: F401
from .feed import BrokerFeed, FeedService, SSEFeed, SubscriptionHandle, WebSocketFeed, make_feed  # noqa: F401
from .renderer import DisplayItem, DisplayKind, format_timestamp, render, render_all  # noqa: F401
from .session import SessionState, StreamSession  # noqa: F401
from .topics import BrokerTopicLister, HttpTopicLister  # noqa: F401
from .window import WindowBuffer  # noqa: F401
