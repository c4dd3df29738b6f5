"""多 Agent 协作模块

- @mention 解析
- 团队感知 / 协作上下文提示词
- 并发扇出与结果合并
"""

from .context import build_collaboration_context, build_system_prompt, build_team_awareness
from .coordinator import (
    COLLAB_PREFIX,
    NO_CONNECTION_MESSAGE,
    CollaborationCoordinator,
)
from .formatter import SECTION_SEPARATOR, format_combined_response
from .mentions import MentionResult, mention_pattern, parse_mentions

__all__ = [
    # Mentions
    "MentionResult",
    "mention_pattern",
    "parse_mentions",
    # Context
    "build_team_awareness",
    "build_collaboration_context",
    "build_system_prompt",
    # Formatter
    "SECTION_SEPARATOR",
    "format_combined_response",
    # Coordinator
    "CollaborationCoordinator",
    "NO_CONNECTION_MESSAGE",
    "COLLAB_PREFIX",
]
