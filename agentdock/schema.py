"""数据模型定义"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    """生成唯一 ID"""
    return str(uuid4())


class MessageRole(str, Enum):
    """消息角色"""

    USER = "user"
    ASSISTANT = "assistant"


class AgentStatus(str, Enum):
    """Agent 状态"""

    IDLE = "idle"
    WORKING = "working"
    THINKING = "thinking"

    @property
    def is_busy(self) -> bool:
        return self is not AgentStatus.IDLE


class TaskStatus(str, Enum):
    """协作任务状态 (只能前进)"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


_TASK_STATUS_ORDER = [TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETE]


class Message(BaseModel):
    """对话消息

    创建后不可变。流式回复通过 ``with_content`` 生成同 id、同时间戳的副本，
    替换历史中的同一个位置。
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: MessageRole
    content: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str = "") -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)

    def with_content(self, content: str) -> "Message":
        """返回内容更新后的副本 (保留 id 和时间戳)"""
        return self.model_copy(update={"content": content})


@dataclass
class Agent:
    """Agent 定义 + 会话状态

    只有 ``messages`` 和 ``status`` 会在对话过程中变化，且只由协调器修改。
    """

    name: str
    role: str
    system_prompt: str
    id: str = field(default_factory=new_id)
    description: str = ""
    model: str = "sonnet"
    tools: List[str] = field(default_factory=list)
    skills: List[str] = field(default_factory=list)
    file_path: Optional[str] = None
    status: AgentStatus = AgentStatus.IDLE
    messages: List[Message] = field(default_factory=list)

    # refresh 时从新定义中采纳的字段
    CONFIG_FIELDS = (
        "role",
        "system_prompt",
        "description",
        "model",
        "tools",
        "skills",
        "file_path",
    )

    def adopt_config(self, other: "Agent") -> None:
        """采纳另一个定义的配置字段，保留 id、消息和状态"""
        for name in self.CONFIG_FIELDS:
            value = getattr(other, name)
            if isinstance(value, list):
                value = list(value)
            setattr(self, name, value)


@dataclass
class CollaborationTask:
    """一次多 Agent 协作任务"""

    message: str
    target_agent_ids: List[str]
    id: str = field(default_factory=new_id)
    responses: Dict[str, str] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        # 去重，保持解析顺序
        self.target_agent_ids = list(dict.fromkeys(self.target_agent_ids))

    @property
    def is_complete(self) -> bool:
        return set(self.responses) == set(self.target_agent_ids)

    @property
    def pending_agent_ids(self) -> List[str]:
        return [aid for aid in self.target_agent_ids if aid not in self.responses]

    def record_response(self, agent_id: str, text: str) -> None:
        """记录某个 Agent 的回复"""
        if agent_id not in self.target_agent_ids:
            raise ValueError(f"Agent {agent_id} 不是任务 {self.id} 的目标")
        self.responses[agent_id] = text

    def advance(self, status: TaskStatus) -> None:
        """推进任务状态，不允许回退"""
        if _TASK_STATUS_ORDER.index(status) < _TASK_STATUS_ORDER.index(self.status):
            raise ValueError(f"任务状态不能从 {self.status.value} 回退到 {status.value}")
        if status is TaskStatus.COMPLETE and not self.is_complete:
            raise ValueError(f"任务 {self.id} 仍有未完成的 Agent: {self.pending_agent_ids}")
        self.status = status
