"""交互输入

- /命令 和 @Agent 名称自动补全
- 文件历史记录
"""

from __future__ import annotations

from html import escape
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory, InMemoryHistory
from prompt_toolkit.styles import Style

if TYPE_CHECKING:
    from .commands import Commands

DEFAULT_HISTORY_FILE = Path.home() / ".agentdock" / "history"


class DockCompleter(Completer):
    """命令和 @mention 补全器"""

    def __init__(self, commands: "Commands", agent_names: Callable[[], Iterable[str]]):
        self.commands = commands
        self.agent_names = agent_names

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor

        if text.startswith("/"):
            parts = text[1:].split(maxsplit=1)
            cmd_name = parts[0] if parts else ""
            if len(parts) <= 1 and not text.endswith(" "):
                for name, desc in self.commands.list_commands():
                    if name.startswith(cmd_name):
                        yield Completion(
                            name,
                            start_position=-len(cmd_name),
                            display=f"/{name}",
                            display_meta=desc[:30],
                        )
            else:
                arg_text = parts[1] if len(parts) > 1 else ""
                for comp in self.commands.get_completions(cmd_name):
                    if comp.lower().startswith(arg_text.lower()):
                        yield Completion(comp, start_position=-len(arg_text))
            return

        # 补全光标前的 @mention
        word = document.get_word_before_cursor(WORD=True)
        if word.startswith("@"):
            prefix = word[1:].lower()
            for name in list(self.agent_names()) + ["all"]:
                if name.lower().startswith(prefix):
                    yield Completion(f"@{name}", start_position=-len(word))


class EnhancedInput:
    """交互输入处理器"""

    def __init__(
        self,
        commands: Optional["Commands"] = None,
        agent_names: Optional[Callable[[], Iterable[str]]] = None,
        history_file: Optional[Path] = None,
    ):
        if history_file is None:
            history_file = DEFAULT_HISTORY_FILE

        try:
            history_file.parent.mkdir(parents=True, exist_ok=True)
            history = FileHistory(str(history_file))
        except OSError:
            history = InMemoryHistory()

        completer = None
        if commands is not None:
            completer = DockCompleter(commands, agent_names or (lambda: []))

        self.style = Style.from_dict({"prompt.user": "#00aaff bold"})
        self.session: PromptSession = PromptSession(
            history=history,
            auto_suggest=AutoSuggestFromHistory(),
            completer=completer,
            style=self.style,
            multiline=False,
            enable_history_search=True,
        )

    async def prompt_async(self, message: str = "👤 你: ") -> str:
        """获取用户输入"""
        return await self.session.prompt_async(HTML(f"<prompt.user>{escape(message)}</prompt.user>"))
