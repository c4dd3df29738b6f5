"""
AgentDock - 多 Agent 协作核心

通过 @mention 把一条消息分发给多个专业 Agent，
Agent 可以由本地 Claude CLI 或流式 API 驱动，结果按 mention 顺序合并。
"""

__version__ = "0.1.0"

from .agents import AgentLoader, create_default_agents
from .config import Config, ConfigError
from .credentials import (
    ChainedCredentialProvider,
    CredentialProvider,
    EnvCredentialProvider,
    StaticCredentialProvider,
)
from .events import Event, EventBroker, EventType
from .schema import (
    Agent,
    AgentStatus,
    CollaborationTask,
    Message,
    MessageRole,
    TaskStatus,
)
from .collaboration import CollaborationCoordinator, parse_mentions

__all__ = [
    "__version__",
    # Schema
    "Agent",
    "AgentStatus",
    "CollaborationTask",
    "Message",
    "MessageRole",
    "TaskStatus",
    # Config
    "Config",
    "ConfigError",
    # Agents
    "AgentLoader",
    "create_default_agents",
    # Credentials
    "CredentialProvider",
    "StaticCredentialProvider",
    "EnvCredentialProvider",
    "ChainedCredentialProvider",
    # Events
    "Event",
    "EventBroker",
    "EventType",
    # Collaboration
    "CollaborationCoordinator",
    "parse_mentions",
]
