"""事件系统

协调器通过事件广播状态变化，前端 (CLI) 订阅后实时显示：
- 非阻塞发布，队列满时丢弃最旧事件
- 按事件类型订阅
- 支持取消事件触发的自动清理
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class EventType(Enum):
    """事件类型"""

    AGENT_STATUS = "agent_status"
    MESSAGE_DELTA = "message_delta"
    TOOL_USE = "tool_use"
    TASK_START = "task_start"
    TASK_COMPLETE = "task_complete"


@dataclass
class Event:
    """事件基类"""

    type: EventType
    timestamp: datetime = field(default_factory=datetime.now)
    agent_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentStatusEvent(Event):
    """Agent 状态变化"""

    type: EventType = EventType.AGENT_STATUS
    status: str = "idle"


@dataclass
class MessageDeltaEvent(Event):
    """回复增量"""

    type: EventType = EventType.MESSAGE_DELTA
    message_id: str = ""
    content: str = ""


@dataclass
class ToolUseEvent(Event):
    """CLI 后端的工具使用通知，tool_name 为 None 表示工具结束"""

    type: EventType = EventType.TOOL_USE
    tool_name: Optional[str] = None


@dataclass
class TaskStartEvent(Event):
    """协作任务开始"""

    type: EventType = EventType.TASK_START
    task_id: str = ""
    target_agent_ids: List[str] = field(default_factory=list)


@dataclass
class TaskCompleteEvent(Event):
    """协作任务完成"""

    type: EventType = EventType.TASK_COMPLETE
    task_id: str = ""
    transcript: str = ""


class EventBroker:
    """事件代理 - 非阻塞发布/订阅"""

    def __init__(self, buffer_size: int = 256):
        self._subscribers: Dict[EventType, List[asyncio.Queue]] = {}
        self._buffer_size = buffer_size
        self._lock = asyncio.Lock()

    async def subscribe(self, event_types: List[EventType]) -> asyncio.Queue:
        """订阅事件类型，用完后调用 unsubscribe"""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._buffer_size)

        async with self._lock:
            for event_type in event_types:
                self._subscribers.setdefault(event_type, []).append(queue)

        return queue

    async def unsubscribe(self, queue: asyncio.Queue, event_types: List[EventType]):
        """取消订阅"""
        async with self._lock:
            for event_type in event_types:
                subscribers = self._subscribers.get(event_type, [])
                if queue in subscribers:
                    subscribers.remove(queue)

    def publish(self, event: Event) -> None:
        """发布事件（非阻塞，可在同步代码中调用）"""
        for queue in self._subscribers.get(event.type, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # 队列满，丢弃最旧事件
                try:
                    queue.get_nowait()
                    queue.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    pass

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, []))
