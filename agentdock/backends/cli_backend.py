"""本地 Claude CLI 后端

通过子进程调用 ``claude -p``，使用 stream-json 输出格式：
- 每个 Agent 独立的会话 ID (会话延续)
- 逐行解析 JSON 事件，增量推送文本和工具使用通知
- 任何退出路径都会回收子进程
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Set
from uuid import uuid4

from .base import (
    AgentBackend,
    AgentContext,
    ChunkCallback,
    CLIBackendError,
    ToolUseCallback,
)

logger = logging.getLogger(__name__)

# stream-json 单行可能很长 (完整的 assistant 消息)
STREAM_LINE_LIMIT = 16 * 1024 * 1024

# 不能泄漏给子进程的环境变量
STRIPPED_ENV_VARS = ("CLAUDECODE", "CLAUDE_CODE_ENTRYPOINT", "ANTHROPIC_API_KEY")

CANDIDATE_PATHS = (
    "~/.local/bin/claude",
    "~/.claude/local/claude",
    "/usr/local/bin/claude",
    "/opt/homebrew/bin/claude",
    "~/.npm-global/bin/claude",
)


def _is_executable(path: str | Path) -> bool:
    path = Path(path).expanduser()
    return path.is_file() and os.access(path, os.X_OK)


def find_claude_executable() -> Optional[str]:
    """查找 claude 可执行文件"""
    for candidate in CANDIDATE_PATHS:
        if _is_executable(candidate):
            return str(Path(candidate).expanduser())
    return shutil.which("claude")


def build_cli_environment(extra_paths: Optional[List[str]] = None) -> Dict[str, str]:
    """构建子进程环境变量"""
    env = dict(os.environ)
    env["TERM"] = "dumb"
    for key in STRIPPED_ENV_VARS:
        env.pop(key, None)

    paths = [str(Path(p).expanduser()) for p in (extra_paths or [])]
    paths.append(env.get("PATH", "/usr/bin:/bin"))
    env["PATH"] = os.pathsep.join(paths)
    return env


class StreamJsonParser:
    """stream-json 事件解析器

    - assistant 事件中的 text 块 → 文本增量
    - assistant 事件中的 tool_use 块 → 工具使用通知
    - result 事件 → 最终文本，并清除工具通知
    """

    def __init__(
        self,
        on_chunk: Optional[ChunkCallback] = None,
        on_tool_use: Optional[ToolUseCallback] = None,
    ):
        self.on_chunk = on_chunk
        self.on_tool_use = on_tool_use
        self.text = ""
        self.result: Optional[str] = None

    @property
    def final_text(self) -> str:
        return self.result if self.result is not None else self.text

    def feed_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return

        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"跳过非 JSON 输出: {line[:200]}")
            return

        if not isinstance(event, dict):
            return

        event_type = event.get("type")
        if event_type == "assistant":
            message = event.get("message") or {}
            for block in message.get("content") or []:
                if not isinstance(block, dict):
                    continue
                if block.get("type") == "text" and block.get("text"):
                    self._append_text(block["text"])
                elif block.get("type") == "tool_use" and block.get("name"):
                    self._emit_tool(block["name"])

        elif event_type == "result":
            self._emit_tool(None)
            result = event.get("result")
            if isinstance(result, str) and result:
                if result.startswith(self.text) and len(result) > len(self.text):
                    self._emit_chunk(result[len(self.text):])
                self.result = result

    def _append_text(self, text: str) -> None:
        # 多轮 assistant 消息之间用空行分隔
        chunk = f"\n\n{text}" if self.text else text
        self.text += chunk
        self._emit_chunk(chunk)

    def _emit_chunk(self, chunk: str) -> None:
        if self.on_chunk:
            self.on_chunk(chunk)

    def _emit_tool(self, name: Optional[str]) -> None:
        if self.on_tool_use:
            self.on_tool_use(name)


class ClaudeCLIBackend(AgentBackend):
    """Claude CLI 子进程后端"""

    error_label = "CLI Error"

    def __init__(
        self,
        executable: Optional[str] = None,
        permission_mode: str = "bypassPermissions",
        extra_paths: Optional[List[str]] = None,
        cwd: Optional[str | Path] = None,
    ):
        self.executable = str(Path(executable).expanduser()) if executable else find_claude_executable()
        self.permission_mode = permission_mode
        self.extra_paths = extra_paths or []
        self.cwd = cwd

        # agent_id -> session_id
        self._sessions: Dict[str, str] = {}
        # 已经成功建立过的会话，之后用 --resume
        self._established: Set[str] = set()

    @property
    def is_available(self) -> bool:
        return self.executable is not None and _is_executable(self.executable)

    def build_args(self, prompt: str, system_prompt: str, context: AgentContext, session_args: List[str]) -> List[str]:
        """构建命令行参数"""
        args = ["-p", prompt, "--output-format", "stream-json", "--verbose"]
        args.extend(session_args)

        if system_prompt:
            args.extend(["--system-prompt", system_prompt])
        if context.tools:
            args.extend(["--allowed-tools", ",".join(context.tools)])
        if context.model:
            args.extend(["--model", context.model])
        if self.permission_mode:
            args.extend(["--permission-mode", self.permission_mode])

        return args

    def _session_args(self, agent_id: str) -> List[str]:
        session_id = self._sessions.setdefault(agent_id, str(uuid4()))
        if agent_id in self._established:
            return ["--resume", session_id]
        return ["--session-id", session_id]

    async def send(
        self,
        prompt: str,
        system_prompt: str,
        context: AgentContext,
        on_chunk: Optional[ChunkCallback] = None,
        on_tool_use: Optional[ToolUseCallback] = None,
    ) -> str:
        if not self.is_available:
            raise CLIBackendError("claude CLI not found")

        session_args = self._session_args(context.agent_id) if context.continue_session else []
        cmd = [self.executable] + self.build_args(prompt, system_prompt, context, session_args)
        parser = StreamJsonParser(on_chunk=on_chunk, on_tool_use=on_tool_use)

        logger.debug(f"启动 CLI ({context.agent_name}): {' '.join(cmd[:3])} ...")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=build_cli_environment(self.extra_paths),
                cwd=self.cwd,
                limit=STREAM_LINE_LIMIT,
            )
        except FileNotFoundError:
            raise CLIBackendError(f"command not found: {self.executable}")
        except PermissionError:
            raise CLIBackendError(f"permission denied: {self.executable}")
        except OSError as e:
            raise CLIBackendError(f"failed to start CLI: {e}")

        stderr_task = asyncio.create_task(process.stderr.read())
        # CLI 有输出或正常退出，说明会话已经创建
        session_created = False
        try:
            async for raw_line in process.stdout:
                session_created = True
                parser.feed_line(raw_line.decode("utf-8", errors="replace"))

            returncode = await process.wait()
            session_created = session_created or returncode == 0
            stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
        except ValueError as e:
            # 超过 STREAM_LINE_LIMIT 的单行
            raise CLIBackendError(f"failed to read CLI output: {e}")
        finally:
            if process.returncode is None:
                logger.warning(f"终止 CLI 子进程 (PID: {process.pid})")
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()
            # 超时和取消也要更新，否则下次会重复使用同一个 --session-id
            if context.continue_session:
                self._settle_session(context.agent_id, session_created)

        text = parser.final_text
        if returncode != 0:
            if not text:
                raise CLIBackendError(f"exit {returncode}: {stderr or 'unknown error'}")
            logger.warning(f"CLI 以 {returncode} 退出，返回已收到的部分回复")

        return text

    def _settle_session(self, agent_id: str, created: bool) -> None:
        """调用结束后更新会话状态

        已创建的会话之后用 --resume；未创建的会话 id 丢弃，下次换新 id。
        """
        if created:
            self._established.add(agent_id)
        elif agent_id not in self._established:
            self._sessions.pop(agent_id, None)

    def reset_session(self, agent_id: str) -> None:
        self._sessions.pop(agent_id, None)
        self._established.discard(agent_id)
