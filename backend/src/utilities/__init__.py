from .constants import *  # noqa: F401,F403
from .utility_functions import (  # noqa: F401
    configure_logging,
    make_ack,
    make_error,
    make_event,
    make_info,
    make_pong,
    now_ts,
    sse_frame,
)
