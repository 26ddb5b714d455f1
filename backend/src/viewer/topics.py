import logging
from typing import List, Optional

import httpx

from models import Broker
from utilities import HTTP_TIMEOUT, VIEWER_SERVER_URL

from .errors import TopicListFetchError

logger = logging.getLogger(__name__)


class HttpTopicLister:
    """Reads topic names from the server's ``GET /topics``."""

    def __init__(self, base_url: str = VIEWER_SERVER_URL, timeout: float = HTTP_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def list_topics(self) -> List[str]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as c:
                r = await c.get(f"{self.base_url}/topics")
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TopicListFetchError(f"could not list topics: {exc}") from exc
        try:
            entries = data["topics"]
            # the server reports {"name", "subscribers"}; plain names are accepted too
            return [e["name"] if isinstance(e, dict) else str(e) for e in entries]
        except (KeyError, TypeError) as exc:
            raise TopicListFetchError(f"unexpected topic list payload: {data!r}") from exc


class BrokerTopicLister:
    def __init__(self, broker: Broker):
        self.broker = broker

    async def list_topics(self) -> List[str]:
        return [t.name for t in await self.broker.list_topics()]
