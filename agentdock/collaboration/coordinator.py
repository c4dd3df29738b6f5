"""协作协调器

管理 Agent 名册和多 Agent 协作：
- 单 Agent 对话 (流式更新同一条回复)
- @mention 扇出到多个 Agent 并发执行
- 按 mention 顺序合并结果，写回每个参与者的历史
- Agent 状态追踪 (任何退出路径都回到 idle)

所有名册与任务状态的修改都在同一个事件循环中完成，
后端调用 (子进程 / 网络) 作为独立的 asyncio 任务并发执行。
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..agents import AgentLoader
from ..backends import AgentBackend, AgentContext, BackendError, ClaudeCLIBackend, create_api_backend
from ..config import Config
from ..credentials import (
    ChainedCredentialProvider,
    CredentialProvider,
    EnvCredentialProvider,
    StaticCredentialProvider,
)
from ..events import (
    AgentStatusEvent,
    EventBroker,
    MessageDeltaEvent,
    TaskCompleteEvent,
    TaskStartEvent,
    ToolUseEvent,
)
from ..schema import (
    Agent,
    AgentStatus,
    CollaborationTask,
    Message,
    TaskStatus,
    new_id,
)
from .context import build_system_prompt
from .formatter import format_combined_response
from .mentions import parse_mentions

logger = logging.getLogger(__name__)

NO_CONNECTION_MESSAGE = (
    "No connection. Configure the Claude CLI subscription or set an API key in the settings."
)
COLLAB_PREFIX = "[Collab]"
COLLAB_ERROR_LABEL = "Error"

ApiBackendFactory = Callable[[str], AgentBackend]


class CollaborationCoordinator:
    """协作协调器

    名册以 Agent ID 为键 (插入顺序即名册顺序)。
    Agent 的 messages 和 status 只由协调器修改。
    """

    def __init__(
        self,
        agents: Optional[Iterable[Agent]] = None,
        config: Optional[Config] = None,
        credentials: Optional[CredentialProvider] = None,
        cli_backend: Optional[AgentBackend] = None,
        api_backend_factory: Optional[ApiBackendFactory] = None,
        loader: Optional[AgentLoader] = None,
        event_broker: Optional[EventBroker] = None,
    ):
        self.config = config or Config()
        self.loader = loader or AgentLoader(self.config.agents_path)
        self.events = event_broker or EventBroker()
        self.credentials = credentials or ChainedCredentialProvider(
            StaticCredentialProvider(self.config.api_key),
            EnvCredentialProvider(self.config.api.api_key_env),
        )
        self.cli_backend = cli_backend or ClaudeCLIBackend(
            executable=self.config.cli.executable,
            permission_mode=self.config.cli.permission_mode,
            extra_paths=self.config.cli.extra_paths,
        )
        self._api_backend_factory = api_backend_factory or (
            lambda api_key: create_api_backend(self.config, api_key)
        )
        self._api_backend: Optional[AgentBackend] = None
        self._api_backend_key: Optional[str] = None

        self._agents: Dict[str, Agent] = {}
        for agent in agents if agents is not None else self.loader.load_agents():
            self._add_agent(agent)

        self._tasks: List[CollaborationTask] = []
        # task_id -> {agent_id: 分支任务}
        self._branches: Dict[str, Dict[str, asyncio.Task]] = {}
        # agent_id -> 未完成的发送数量
        self._inflight: Counter = Counter()

    # ------------------------------------------------------------------
    # 名册
    # ------------------------------------------------------------------

    @property
    def agents(self) -> List[Agent]:
        """按名册顺序返回所有 Agent"""
        return list(self._agents.values())

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def find_agent(self, name: str) -> Optional[Agent]:
        """按名称查找 (大小写不敏感)"""
        lowered = name.lstrip("@").lower()
        for agent in self._agents.values():
            if agent.name.lower() == lowered:
                return agent
        return None

    def _add_agent(self, agent: Agent) -> None:
        if agent.id in self._agents:
            agent.id = new_id()
        self._agents[agent.id] = agent

    def refresh_roster(self, agents: Iterable[Agent]) -> None:
        """用新的 Agent 定义刷新名册

        同名 Agent 原地采纳新配置，保留 id、消息和状态；新名称追加到末尾；
        新定义中缺失的 Agent 保留不动。
        """
        by_name = {agent.name: agent for agent in self._agents.values()}
        added = 0
        for incoming in agents:
            existing = by_name.get(incoming.name)
            if existing is not None:
                existing.adopt_config(incoming)
            else:
                self._add_agent(incoming)
                by_name[incoming.name] = incoming
                added += 1
        logger.info(f"名册已刷新: {len(self._agents)} 个 Agent (新增 {added})")

    def reload_agents(self) -> None:
        """从 Agent 定义目录重新加载名册"""
        self.refresh_roster(self.loader.load_agents())

    # ------------------------------------------------------------------
    # 任务
    # ------------------------------------------------------------------

    @property
    def tasks(self) -> List[CollaborationTask]:
        return list(self._tasks)

    def get_task(self, task_id: str) -> Optional[CollaborationTask]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def _register_task(self, task: CollaborationTask) -> None:
        self._tasks.append(task)

        # 只淘汰已完成的旧任务
        limit = self.config.collaboration.max_retained_tasks
        while len(self._tasks) > limit:
            oldest = next((t for t in self._tasks if t.status is TaskStatus.COMPLETE), None)
            if oldest is None:
                break
            self._tasks.remove(oldest)

    def cancel_task(self, task_id: str) -> bool:
        """取消协作任务中尚未完成的分支

        被取消的分支记录为错误回复，任务仍会完成。
        """
        branches = self._branches.get(task_id)
        if not branches:
            return False
        for branch in branches.values():
            if not branch.done():
                branch.cancel()
        return True

    # ------------------------------------------------------------------
    # 后端与凭证
    # ------------------------------------------------------------------

    def set_api_key(self, api_key: str) -> None:
        """设置 API 凭证"""
        self.credentials = StaticCredentialProvider(api_key)
        self._api_backend = None
        self._api_backend_key = None

    @property
    def has_api_key(self) -> bool:
        return self.credentials.has_credential()

    def select_backend(self) -> Optional[AgentBackend]:
        """选择后端：优先订阅 CLI，其次 API 凭证，都没有时返回 None"""
        if self.config.use_subscription and self.cli_backend.is_available:
            return self.cli_backend

        api_key = self.credentials.get_credential()
        if api_key is None:
            return None

        if self._api_backend is None or self._api_backend_key != api_key:
            self._api_backend = self._api_backend_factory(api_key)
            self._api_backend_key = api_key
        return self._api_backend

    def reset_session(self, agent_id: str) -> bool:
        """清空 Agent 的对话历史和后端会话"""
        agent = self._agents.get(agent_id)
        if agent is None:
            return False
        agent.messages.clear()
        self.cli_backend.reset_session(agent_id)
        if self._api_backend is not None:
            self._api_backend.reset_session(agent_id)
        return True

    async def _call_backend(
        self,
        backend: AgentBackend,
        prompt: str,
        system_prompt: str,
        context: AgentContext,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> str:
        """调用后端，受 request_timeout 限制"""

        def on_tool_use(tool_name: Optional[str]) -> None:
            self.events.publish(ToolUseEvent(agent_id=context.agent_id, tool_name=tool_name))

        call = backend.send(
            prompt,
            system_prompt,
            context,
            on_chunk=on_chunk,
            on_tool_use=on_tool_use,
        )
        timeout = self.config.collaboration.request_timeout
        if timeout:
            return await asyncio.wait_for(call, timeout=timeout)
        return await call

    def _describe_failure(self, label: str, error: BaseException) -> str:
        if isinstance(error, asyncio.TimeoutError):
            timeout = self.config.collaboration.request_timeout
            return f"{label}: request timed out after {timeout:g} seconds"
        if isinstance(error, asyncio.CancelledError):
            return f"{label}: cancelled"
        if isinstance(error, BackendError):
            return f"{label}: {error.message}"
        return f"{label}: {error}"

    # ------------------------------------------------------------------
    # 状态与消息
    # ------------------------------------------------------------------

    def _set_status(self, agent_id: str, status: AgentStatus) -> None:
        agent = self._agents.get(agent_id)
        if agent is None or agent.status is status:
            return
        agent.status = status
        self.events.publish(AgentStatusEvent(agent_id=agent_id, status=status.value))

    def _begin(self, agent_id: str, status: AgentStatus) -> None:
        self._inflight[agent_id] += 1
        self._set_status(agent_id, status)

    def _finish(self, agent_id: str) -> None:
        self._inflight[agent_id] -= 1
        if self._inflight[agent_id] <= 0:
            del self._inflight[agent_id]
            self._set_status(agent_id, AgentStatus.IDLE)

    def _append(self, agent: Agent, message: Message) -> Message:
        agent.messages.append(message)
        return message

    def _replace(self, agent: Agent, message_id: str, content: str) -> Optional[Message]:
        """替换历史中同一 id 的消息，找不到时返回 None"""
        for index in range(len(agent.messages) - 1, -1, -1):
            current = agent.messages[index]
            if current.id == message_id:
                updated = current.with_content(content)
                agent.messages[index] = updated
                return updated
        return None

    def _slot_content(self, agent: Agent, message_id: str) -> Optional[str]:
        for message in reversed(agent.messages):
            if message.id == message_id:
                return message.content
        return None

    # ------------------------------------------------------------------
    # 单 Agent 对话
    # ------------------------------------------------------------------

    async def send_message(self, agent_id: str, content: str) -> Optional[Message]:
        """发送消息给单个 Agent

        Returns:
            最终的 assistant 消息；agent_id 不存在时返回 None
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            logger.debug(f"忽略发往未知 Agent 的消息: {agent_id}")
            return None

        history = list(agent.messages)
        self._append(agent, Message.user(content))
        self._begin(agent_id, AgentStatus.THINKING)
        try:
            backend = self.select_backend()
            if backend is None:
                return self._append(agent, Message.assistant(NO_CONNECTION_MESSAGE))

            system_prompt = build_system_prompt(agent, self.agents)
            context = AgentContext.from_agent(agent, history)

            self._set_status(agent_id, AgentStatus.WORKING)
            slot = self._append(agent, Message.assistant())
            streamed: List[str] = []

            def on_chunk(text: str) -> None:
                streamed.append(text)
                self._replace(agent, slot.id, "".join(streamed))
                self.events.publish(
                    MessageDeltaEvent(agent_id=agent_id, message_id=slot.id, content=text)
                )

            try:
                response = await self._call_backend(
                    backend, content, system_prompt, context, on_chunk=on_chunk
                )
            except asyncio.CancelledError as e:
                self._fail_slot(agent, slot, self._describe_failure(backend.error_label, e))
                raise
            except Exception as e:
                if not isinstance(e, (BackendError, asyncio.TimeoutError)):
                    logger.exception(f"{agent.name} 的后端调用出现意外错误")
                return self._fail_slot(agent, slot, self._describe_failure(backend.error_label, e))

            return self._replace(agent, slot.id, response) or self._append(
                agent, Message.assistant(response)
            )
        finally:
            self._finish(agent_id)

    def _fail_slot(self, agent: Agent, slot: Message, text: str) -> Message:
        """占位为空时替换为错误消息，否则保留已收到的内容并追加错误消息"""
        if not self._slot_content(agent, slot.id):
            replaced = self._replace(agent, slot.id, text)
            if replaced is not None:
                return replaced
        return self._append(agent, Message.assistant(text))

    # ------------------------------------------------------------------
    # 多 Agent 协作
    # ------------------------------------------------------------------

    async def send_collaborative_message(self, content: str) -> Optional[CollaborationTask]:
        """解析 @mention 并分发

        - 没有 mention：忽略
        - 只有一个：按单 Agent 对话处理
        - 多个：并发发送给所有 Agent，合并结果写入每个参与者的历史

        Returns:
            多 Agent 协作时返回完成的任务，否则返回 None
        """
        mentions = parse_mentions(content, self.agents)
        if not mentions.is_collaboration:
            if mentions.mentioned_ids:
                await self.send_message(mentions.mentioned_ids[0], mentions.clean_text)
            return None

        task = CollaborationTask(
            message=mentions.clean_text,
            target_agent_ids=mentions.mentioned_ids,
        )
        task.advance(TaskStatus.IN_PROGRESS)
        self._register_task(task)
        self.events.publish(
            TaskStartEvent(task_id=task.id, target_agent_ids=list(task.target_agent_ids))
        )
        logger.info(f"协作任务 {task.id[:8]} 开始: {len(task.target_agent_ids)} 个 Agent")

        semaphore = asyncio.Semaphore(self.config.collaboration.max_concurrent_agents)
        branches = {
            agent_id: asyncio.create_task(self._run_branch(task, agent_id, semaphore))
            for agent_id in task.target_agent_ids
        }
        self._branches[task.id] = branches

        owners = {branch: agent_id for agent_id, branch in branches.items()}
        pending = set(owners)
        try:
            # 唯一的结果汇集点，完成顺序任意
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for branch in done:
                    task.record_response(owners[branch], self._branch_result(branch))
        except asyncio.CancelledError:
            for branch in pending:
                branch.cancel()
            if pending:
                await asyncio.wait(pending)
            for branch in pending:
                task.record_response(owners[branch], self._branch_result(branch))
            task.advance(TaskStatus.COMPLETE)
            raise
        finally:
            self._branches.pop(task.id, None)

        task.advance(TaskStatus.COMPLETE)
        combined = format_combined_response(task, self._agents)

        for agent_id in task.target_agent_ids:
            agent = self._agents.get(agent_id)
            if agent is None:
                continue
            self._append(agent, Message.user(f"{COLLAB_PREFIX} {task.message}"))
            self._append(agent, Message.assistant(combined))

        self.events.publish(TaskCompleteEvent(task_id=task.id, transcript=combined))
        logger.info(f"协作任务 {task.id[:8]} 完成")
        return task

    def _branch_result(self, branch: asyncio.Task) -> str:
        # 开始执行前就被取消的分支没有返回值
        if branch.cancelled():
            return f"{COLLAB_ERROR_LABEL}: cancelled"
        _, text = branch.result()
        return text

    async def _run_branch(
        self,
        task: CollaborationTask,
        agent_id: str,
        semaphore: asyncio.Semaphore,
    ) -> Tuple[str, str]:
        """协作任务中的单个分支，总是返回 (agent_id, 回复或错误文本)"""
        agent = self._agents.get(agent_id)
        if agent is None:
            return agent_id, f"{COLLAB_ERROR_LABEL}: agent not found"

        self._begin(agent_id, AgentStatus.WORKING)
        try:
            async with semaphore:
                backend = self.select_backend()
                if backend is None:
                    return agent_id, f"{COLLAB_ERROR_LABEL}: {NO_CONNECTION_MESSAGE}"

                system_prompt = build_system_prompt(agent, self.agents, task.target_agent_ids)
                context = AgentContext.from_agent(agent, continue_session=False)
                response = await self._call_backend(backend, task.message, system_prompt, context)
                return agent_id, response
        except asyncio.CancelledError as e:
            # cancel_task 取消的分支记为错误回复，让任务仍能完成
            logger.info(f"协作分支已取消: {agent.name}")
            return agent_id, self._describe_failure(COLLAB_ERROR_LABEL, e)
        except Exception as e:
            if not isinstance(e, (BackendError, asyncio.TimeoutError)):
                logger.exception(f"{agent.name} 的协作分支出现意外错误")
            return agent_id, self._describe_failure(COLLAB_ERROR_LABEL, e)
        finally:
            self._finish(agent_id)
