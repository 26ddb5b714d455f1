from .schemas import CreateTopicRequest, ViewerSelection  # noqa: F401
