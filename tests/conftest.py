"""pytest 配置"""

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# 添加项目根目录到 Python 路径
ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from agentdock.backends import AgentBackend, AgentContext  # noqa: E402
from agentdock.collaboration import CollaborationCoordinator  # noqa: E402
from agentdock.config import CollaborationConfig, Config  # noqa: E402
from agentdock.credentials import StaticCredentialProvider  # noqa: E402
from agentdock.schema import Agent  # noqa: E402


class FakeBackend(AgentBackend):
    """内存后端：按 Agent 名称返回预设回复"""

    def __init__(
        self,
        replies: Optional[Dict[str, str]] = None,
        chunks: Optional[Dict[str, List[str]]] = None,
        delays: Optional[Dict[str, float]] = None,
        errors: Optional[Dict[str, Exception]] = None,
        available: bool = True,
        error_label: str = "CLI Error",
    ):
        self.replies = replies or {}
        self.chunks = chunks or {}
        self.delays = delays or {}
        self.errors = errors or {}
        self.available = available
        self.error_label = error_label
        self.calls: List[dict] = []
        self.reset_ids: List[str] = []
        # 每次调用开始时记录 Agent 状态
        self.statuses_seen: List[str] = []

    @property
    def is_available(self) -> bool:
        return self.available

    async def send(self, prompt, system_prompt, context: AgentContext, on_chunk=None, on_tool_use=None):
        self.calls.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "context": context,
        })
        name = context.agent_name

        delay = self.delays.get(name, 0)
        if delay:
            await asyncio.sleep(delay)

        for chunk in self.chunks.get(name, []):
            if on_chunk:
                on_chunk(chunk)
            await asyncio.sleep(0)

        if name in self.errors:
            raise self.errors[name]

        if name in self.replies:
            return self.replies[name]
        if name in self.chunks:
            return "".join(self.chunks[name])
        return f"{name} reply"

    def reset_session(self, agent_id: str) -> None:
        self.reset_ids.append(agent_id)


def build_agents() -> List[Agent]:
    return [
        Agent(name="Backend", role="Backend Developer", system_prompt="You build APIs."),
        Agent(name="Frontend", role="Frontend Designer", system_prompt="You build UIs."),
        Agent(name="Researcher", role="Tech Researcher", system_prompt="You research."),
    ]


@pytest.fixture
def agents():
    """默认三个 Agent"""
    return build_agents()


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def make_coordinator(tmp_path):
    """创建使用内存后端的协调器"""

    def factory(
        backend: Optional[AgentBackend] = None,
        agents: Optional[List[Agent]] = None,
        api_key: Optional[str] = None,
        use_subscription: bool = True,
        **collaboration,
    ) -> CollaborationCoordinator:
        config = Config(
            use_subscription=use_subscription,
            agents_dir=str(tmp_path / "agents"),
            collaboration=CollaborationConfig(**collaboration),
        )
        return CollaborationCoordinator(
            agents=agents if agents is not None else build_agents(),
            config=config,
            credentials=StaticCredentialProvider(api_key),
            cli_backend=backend if backend is not None else FakeBackend(),
        )

    return factory


@pytest.fixture
def coordinator(make_coordinator, fake_backend):
    return make_coordinator(backend=fake_backend)
