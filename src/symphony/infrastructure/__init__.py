"""Infrastructure layer for Symphony."""

from symphony.infrastructure.claude_session import ClaudeSessionProvider
from symphony.infrastructure.config import Config, ConfigManager
from symphony.infrastructure.git_workspace import GitWorkspaceProvider
from symphony.infrastructure.logger import get_logger, setup_logging
from symphony.infrastructure.state_store import StateStore

__all__ = [
    "ClaudeSessionProvider",
    "Config",
    "ConfigManager",
    "GitWorkspaceProvider",
    "StateStore",
    "get_logger",
    "setup_logging",
]
