"""终端显示

- Markdown 渲染 Agent 回复
- Agent / 任务列表表格
- 流式回复增量输出
"""

from __future__ import annotations

from typing import Iterable, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from .schema import Agent, AgentStatus, CollaborationTask, TaskStatus

STATUS_STYLES = {
    AgentStatus.IDLE: "green",
    AgentStatus.THINKING: "yellow",
    AgentStatus.WORKING: "cyan",
}

TASK_STATUS_STYLES = {
    TaskStatus.PENDING: "dim",
    TaskStatus.IN_PROGRESS: "yellow",
    TaskStatus.COMPLETE: "green",
}


class Display:
    """终端显示"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print(self, text: str = "", style: Optional[str] = None):
        self.console.print(text, style=style)

    def markdown(self, text: str):
        self.console.print(Markdown(text))

    def success(self, message: str):
        self.console.print(f"✅ {message}", style="green")

    def error(self, message: str):
        self.console.print(f"❌ {message}", style="red")

    def warning(self, message: str):
        self.console.print(f"⚠️ {message}", style="yellow")

    def info(self, message: str):
        self.console.print(f"ℹ️ {message}", style="blue")

    def agent_header(self, agent: Agent):
        """Agent 回复标题"""
        header = Text()
        header.append("🤖 ", style="bold")
        header.append(agent.name, style="bold cyan")
        header.append(f" ({agent.role})", style="dim")
        self.console.print()
        self.console.print(header)

    def agent_reply(self, agent: Agent, text: str):
        self.agent_header(agent)
        self.markdown(text)

    def tool_use(self, agent: Optional[Agent], tool_name: Optional[str]):
        """工具使用通知，tool_name 为 None 时不显示"""
        if tool_name is None:
            return
        name = agent.name if agent else "?"
        self.console.print(f"   🔧 {name} → {tool_name}", style="dim")

    def agents_table(self, agents: Iterable[Agent], current_id: Optional[str] = None) -> Table:
        """Agent 列表"""
        table = Table(title="Agents", show_lines=False)
        table.add_column("")
        table.add_column("Name", style="bold")
        table.add_column("Role")
        table.add_column("Model", style="dim")
        table.add_column("Status")
        table.add_column("Messages", justify="right")

        for agent in agents:
            marker = "▶" if agent.id == current_id else ""
            table.add_row(
                marker,
                agent.name,
                agent.role,
                agent.model or "-",
                Text(agent.status.value, style=STATUS_STYLES[agent.status]),
                str(len(agent.messages)),
            )
        return table

    def tasks_table(self, tasks: Iterable[CollaborationTask], agents_by_id: dict) -> Table:
        """协作任务列表"""
        table = Table(title="Collaboration tasks")
        table.add_column("ID", style="dim")
        table.add_column("Status")
        table.add_column("Agents")
        table.add_column("Message")

        for task in tasks:
            names = [
                agents_by_id[aid].name if aid in agents_by_id else aid[:8]
                for aid in task.target_agent_ids
            ]
            preview = task.message if len(task.message) <= 40 else task.message[:40] + "..."
            table.add_row(
                task.id[:8],
                Text(task.status.value, style=TASK_STATUS_STYLES[task.status]),
                ", ".join(names),
                preview,
            )
        return table

    def spinner(self, message: str = "思考中..."):
        """返回一个 spinner 上下文管理器"""
        return self.console.status(f"[cyan]{message}[/cyan]", spinner="dots")


class StreamDisplay:
    """单 Agent 流式回复输出"""

    def __init__(self, display: Display, agent: Agent):
        self.display = display
        self.agent = agent
        self.started = False
        self.buffer = ""

    def on_content(self, text: str):
        if not self.started:
            self.display.agent_header(self.agent)
            self.started = True
        self.display.console.print(text, end="", markup=False, highlight=False)
        self.buffer += text

    def finish(self):
        if self.started:
            self.display.console.print()
