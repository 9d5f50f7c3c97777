"""Shared building blocks for steward: configuration, storage models and model clients."""

from .config import StewardConfig, load_steward_config
from .database import create_engine, create_session_factory, init_db
from .embeddings import OpenAIEmbedder
from .llm_client import AuthenticationError, ClaudeClient, Message

__version__ = "0.3.0"

__all__ = [
    "AuthenticationError",
    "ClaudeClient",
    "Message",
    "OpenAIEmbedder",
    "StewardConfig",
    "create_engine",
    "create_session_factory",
    "init_db",
    "load_steward_config",
]
