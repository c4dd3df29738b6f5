"""命令系统

以 cmd_ 前缀的方法自动注册为 /命令，支持别名和前缀匹配。
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from .collaboration import CollaborationCoordinator
    from .display import Display


class Commands:
    """命令管理器

    同时保存交互会话的当前 Agent，不带 @mention 的消息发给它。
    """

    ALIASES = {
        "q": "quit",
        "exit": "quit",
        "?": "help",
        "h": "help",
        "a": "agents",
        "u": "use",
        "t": "tasks",
    }

    def __init__(
        self,
        coordinator: "CollaborationCoordinator",
        display: "Display",
        current_agent_id: Optional[str] = None,
    ):
        self.coordinator = coordinator
        self.display = display
        agents = coordinator.agents
        self.current_agent_id = current_agent_id or (agents[0].id if agents else None)
        self._commands = self._discover_commands()

    def _discover_commands(self) -> dict[str, Callable]:
        commands = {}
        for name in dir(self):
            if name.startswith("cmd_"):
                commands[name[4:]] = getattr(self, name)
        return commands

    def get_command(self, name: str) -> Optional[Callable]:
        """获取命令（支持别名和前缀匹配）"""
        name = self.ALIASES.get(name, name)
        if name in self._commands:
            return self._commands[name]

        matches = [cmd for cmd in self._commands if cmd.startswith(name)]
        if len(matches) == 1:
            return self._commands[matches[0]]
        return None

    def get_completions(self, cmd_name: str) -> list[str]:
        completion_method = getattr(self, f"completions_{cmd_name}", None)
        if completion_method:
            return completion_method()
        return []

    def list_commands(self) -> list[tuple[str, str]]:
        result = []
        for name, func in sorted(self._commands.items()):
            doc = func.__doc__ or "无描述"
            result.append((name, doc.strip().split("\n")[0]))
        return result

    @property
    def current_agent(self):
        if self.current_agent_id is None:
            return None
        return self.coordinator.get_agent(self.current_agent_id)

    async def execute(self, command_line: str) -> tuple[bool, str]:
        """执行命令

        Returns:
            (should_continue, message): 是否继续循环，返回消息
        """
        parts = command_line.split(maxsplit=1)
        if not parts:
            return True, "❓ 输入 /help 查看帮助"
        cmd_name = parts[0].lower()
        args = parts[1] if len(parts) > 1 else ""

        cmd_func = self.get_command(cmd_name)
        if not cmd_func:
            return True, f"❓ 未知命令: {cmd_name}，输入 /help 查看帮助"

        result = cmd_func(args)
        if inspect.iscoroutine(result):
            result = await result
        return result

    # ==================== 命令实现 ====================

    def cmd_help(self, args: str) -> tuple[bool, str]:
        """显示帮助信息"""
        lines = ["\n📖 可用命令:\n"]
        for name, desc in self.list_commands():
            lines.append(f"  /{name:<10} {desc}")
        lines.append("\n💬 消息:")
        lines.append("  直接输入发给当前 Agent，@Name 指定 Agent，多个 @ 或 @all 发起协作")
        return True, "\n".join(lines)

    def cmd_quit(self, args: str) -> tuple[bool, str]:
        """退出程序"""
        return False, "👋 再见！"

    def cmd_agents(self, args: str) -> tuple[bool, str]:
        """列出所有 Agent"""
        self.display.console.print(
            self.display.agents_table(self.coordinator.agents, self.current_agent_id)
        )
        return True, ""

    def cmd_use(self, args: str) -> tuple[bool, str]:
        """切换当前 Agent: /use <name>"""
        name = args.strip()
        if not name:
            current = self.current_agent
            return True, f"当前 Agent: {current.name if current else '无'}"

        agent = self.coordinator.find_agent(name)
        if agent is None:
            return True, f"❌ 找不到 Agent: {name}"
        self.current_agent_id = agent.id
        return True, f"✅ 当前 Agent: {agent.name} ({agent.role})"

    def completions_use(self) -> list[str]:
        return [agent.name for agent in self.coordinator.agents]

    def cmd_tasks(self, args: str) -> tuple[bool, str]:
        """列出协作任务"""
        tasks = self.coordinator.tasks
        if not tasks:
            return True, "暂无协作任务"
        agents_by_id = {agent.id: agent for agent in self.coordinator.agents}
        self.display.console.print(self.display.tasks_table(tasks, agents_by_id))
        return True, ""

    def cmd_reset(self, args: str) -> tuple[bool, str]:
        """清空 Agent 对话历史: /reset [name]"""
        name = args.strip()
        agent = self.coordinator.find_agent(name) if name else self.current_agent
        if agent is None:
            return True, f"❌ 找不到 Agent: {name}"
        self.coordinator.reset_session(agent.id)
        return True, f"✅ 已清空 {agent.name} 的对话"

    def completions_reset(self) -> list[str]:
        return self.completions_use()

    def cmd_reload(self, args: str) -> tuple[bool, str]:
        """重新加载 Agent 定义"""
        self.coordinator.reload_agents()
        return True, f"✅ 已加载 {len(self.coordinator.agents)} 个 Agent"
