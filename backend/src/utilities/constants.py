import os

# ------------ Config ------------
SUBSCRIBER_QUEUE_SIZE = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "50"))    # bounded per-subscriber queue
REPLAY_BUFFER_SIZE = int(os.getenv("REPLAY_BUFFER_SIZE", "100"))         # last N messages to keep per topic
HEARTBEAT_INTERVAL = int(os.getenv("HEARTBEAT_INTERVAL", "30"))          # seconds between SSE keep-alive comments
# --------------------------------

# ------------ Viewer ------------
DEFAULT_TOPIC = os.getenv("DEFAULT_TOPIC", "test-topic")
DEFAULT_WINDOW_SIZE = int(os.getenv("DEFAULT_WINDOW_SIZE", "50"))
DEFAULT_SSE_LIMIT = int(os.getenv("DEFAULT_SSE_LIMIT", "50"))            # /events fallback when limit is bad
VIEWER_SERVER_URL = os.getenv("VIEWER_SERVER_URL", "http://localhost:8000")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
INVALID_DATE = "Invalid date"
# --------------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# ------------ Log files ------------
LOG_DIR = os.getenv("LOG_DIR", "/tmp/local")                             # *.log files published as topics
LOG_SUFFIX = ".log"
LOG_POLL_INTERVAL = float(os.getenv("LOG_POLL_INTERVAL", "1"))           # seconds between directory scans
# -----------------------------------
