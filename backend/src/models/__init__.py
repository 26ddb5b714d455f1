from .models import Broker, Subscriber, Topic  # noqa: F401
from .log_source import LogDirectorySource, is_log_name, list_log_files  # noqa: F401
