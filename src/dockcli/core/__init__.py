"""Engine API client, session helpers and progress streams."""

from .engine_client import EngineClient
from .jsonstream import JSONMessageStream, display_json_messages
from .types import EngineConfig

__all__ = ["EngineClient", "EngineConfig", "JSONMessageStream", "display_json_messages"]
