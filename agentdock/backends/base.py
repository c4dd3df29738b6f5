"""Agent 后端抽象基类"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..schema import Agent, Message

ChunkCallback = Callable[[str], None]
# None 表示工具使用结束
ToolUseCallback = Callable[[Optional[str]], None]


class BackendError(Exception):
    """后端调用失败，message 可直接展示给用户"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class CLIBackendError(BackendError):
    """CLI 子进程失败"""


class APIBackendError(BackendError):
    """API 请求或流式传输失败"""


@dataclass
class AgentContext:
    """一次发送所属的 Agent 信息"""

    agent_id: str
    agent_name: str
    model: Optional[str] = None
    tools: List[str] = field(default_factory=list)
    # 本次 prompt 之前的对话历史
    history: List[Message] = field(default_factory=list)
    # False 时不使用、也不建立后端的会话延续状态 (协作任务)
    continue_session: bool = True

    @classmethod
    def from_agent(
        cls,
        agent: Agent,
        history: Optional[List[Message]] = None,
        continue_session: bool = True,
    ) -> "AgentContext":
        return cls(
            agent_id=agent.id,
            agent_name=agent.name,
            model=agent.model,
            tools=list(agent.tools),
            history=list(history or []),
            continue_session=continue_session,
        )


class AgentBackend(ABC):
    """Agent 后端

    统一契约：发送 prompt + 系统提示词，返回完整回复文本。
    可以通过 on_chunk 增量推送文本，通过 on_tool_use 推送工具使用通知。
    需要在不同 Agent 之间并发调用，跨调用的状态必须以 agent_id 为键。
    """

    # 单 Agent 对话中错误消息的前缀
    error_label: str = "Error"

    @property
    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def send(
        self,
        prompt: str,
        system_prompt: str,
        context: AgentContext,
        on_chunk: Optional[ChunkCallback] = None,
        on_tool_use: Optional[ToolUseCallback] = None,
    ) -> str:
        """发送消息并返回完整回复

        Raises:
            BackendError: 调用失败
        """
        pass

    def reset_session(self, agent_id: str) -> None:
        """清除某个 Agent 的会话延续状态"""
        pass
