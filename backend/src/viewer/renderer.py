"""Per-message display decision.

A raw message is shown as a STRUCTURED tree when it decodes as JSON and as
PLAIN text otherwise. Objects carrying a ``time`` field get that field
rewritten to ``YYYY-MM-DD HH:MM:SS`` so feeds that log epoch milliseconds and
feeds that log ISO strings read the same.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Sequence

from dateutil import parser as date_parser

from utilities import INVALID_DATE, TIME_FORMAT

logger = logging.getLogger(__name__)

TIME_FIELD = "time"


class DisplayKind(str, Enum):
    STRUCTURED = "structured"
    PLAIN = "plain"


@dataclass(frozen=True)
class DisplayItem:
    kind: DisplayKind
    # decoded JSON for STRUCTURED, the untouched text for PLAIN
    value: Any

    @property
    def is_structured(self) -> bool:
        return self.kind is DisplayKind.STRUCTURED


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, bool):
        raise TypeError("bool is not a timestamp")
    if isinstance(value, (int, float)):
        # numeric timestamps are epoch milliseconds
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        return date_parser.parse(value)
    raise TypeError(f"unsupported timestamp type {type(value).__name__}")


def format_timestamp(value: Any) -> str:
    """Format ``value`` as ``YYYY-MM-DD HH:MM:SS``, or ``"Invalid date"``.

    Aware datetimes are converted to UTC first; naive ones are shown as given.
    """
    try:
        dt = _to_datetime(value)
        if dt.tzinfo is not None:
            dt = dt.astimezone(timezone.utc)
        return dt.strftime(TIME_FORMAT)
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        logger.debug("unparseable time value %r: %s", value, exc)
        return INVALID_DATE


def _reject_constant(token: str):
    # NaN and Infinity are not JSON
    raise ValueError(f"non-standard JSON constant {token}")


def _has_time(value: Any) -> bool:
    # null, 0, "" and false mean "no timestamp" and are left alone
    return value not in (None, False, 0, "")


def render(raw: str) -> DisplayItem:
    try:
        data = json.loads(raw, parse_constant=_reject_constant)
    except (TypeError, ValueError, RecursionError):
        # RecursionError: nesting deeper than the decoder can follow
        return DisplayItem(DisplayKind.PLAIN, raw)
    if isinstance(data, dict) and _has_time(data.get(TIME_FIELD)):
        data[TIME_FIELD] = format_timestamp(data[TIME_FIELD])
    return DisplayItem(DisplayKind.STRUCTURED, data)


def render_all(raws: Sequence[str]) -> List[DisplayItem]:
    return [render(raw) for raw in raws]
