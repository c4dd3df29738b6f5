"""@mention 解析

支持 ``@<Agent 名称>`` 和 ``@all``，大小写不敏感，按完整词边界匹配：
``@Back`` 不会命中 ``@Backend``。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List

from ..schema import Agent

ALL_MENTION = "all"


@dataclass
class MentionResult:
    """解析结果"""

    clean_text: str
    mentioned_ids: List[str] = field(default_factory=list)

    @property
    def is_collaboration(self) -> bool:
        return len(self.mentioned_ids) > 1


def mention_pattern(name: str) -> re.Pattern:
    """``@name`` 的匹配模式：@ 前不能是单词字符或 @，名称后不能紧跟单词字符、- 或 @"""
    return re.compile(rf"(?<![\w@])@{re.escape(name)}(?![\w@-])", re.IGNORECASE)


def parse_mentions(text: str, agents: Iterable[Agent]) -> MentionResult:
    """提取消息中的 @mention

    Returns:
        MentionResult: 去掉 mention 的文本，以及按名册顺序排列的 Agent ID
    """
    agents = list(agents)

    all_pattern = mention_pattern(ALL_MENTION)
    if all_pattern.search(text):
        return MentionResult(
            clean_text=all_pattern.sub("", text).strip(),
            mentioned_ids=[agent.id for agent in agents],
        )

    # 长名称优先剥离，避免 "@Back End" 同时命中 "Back"
    matched = set()
    clean_text = text
    for agent in sorted(agents, key=lambda a: len(a.name), reverse=True):
        pattern = mention_pattern(agent.name)
        if pattern.search(clean_text):
            matched.add(agent.id)
            clean_text = pattern.sub("", clean_text)

    return MentionResult(
        clean_text=clean_text.strip(),
        mentioned_ids=[agent.id for agent in agents if agent.id in matched],
    )
