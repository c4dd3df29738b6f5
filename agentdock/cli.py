"""
AgentDock CLI 入口

- 交互模式：当前 Agent 对话，@mention 发起多 Agent 协作
- 非交互模式：-p 执行一条消息，支持 JSON 输出
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union

from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .collaboration import (
    NO_CONNECTION_MESSAGE,
    CollaborationCoordinator,
    format_combined_response,
    parse_mentions,
)
from .commands import Commands
from .config import Config, ConfigError
from .display import Display, StreamDisplay
from .events import (
    Event,
    EventType,
    MessageDeltaEvent,
    TaskStartEvent,
    ToolUseEvent,
)
from .input import EnhancedInput
from .schema import Agent, CollaborationTask, Message

logger = logging.getLogger(__name__)

ERROR_PREFIXES = ("CLI Error:", "API Error:", "Error:")

RENDERED_EVENTS = [EventType.MESSAGE_DELTA, EventType.TOOL_USE, EventType.TASK_START]

RouteResult = Tuple[Optional[Agent], Union[Message, CollaborationTask, None]]


def setup_logging(verbose: bool = False) -> None:
    """日志输出到 stderr，-v 时显示 DEBUG"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def is_error_turn(text: str) -> bool:
    return text == NO_CONNECTION_MESSAGE or text.startswith(ERROR_PREFIXES)


def load_config(args: argparse.Namespace) -> Config:
    """加载配置并应用命令行覆盖"""
    config = Config.load(args.config)
    if args.agents_dir:
        config.agents_dir = args.agents_dir
    if args.api:
        config.use_subscription = False
    return config


async def route_message(
    coordinator: CollaborationCoordinator,
    text: str,
    current_agent_id: Optional[str],
) -> RouteResult:
    """按 @mention 路由用户输入

    - 多个 mention 或 @all：协作任务
    - 一个 mention：发给该 Agent (去掉 mention)
    - 没有 mention：发给当前 Agent
    """
    mentions = parse_mentions(text, coordinator.agents)
    if mentions.is_collaboration:
        return None, await coordinator.send_collaborative_message(text)

    if mentions.mentioned_ids:
        agent_id = mentions.mentioned_ids[0]
        text = mentions.clean_text
    else:
        agent_id = current_agent_id

    agent = coordinator.get_agent(agent_id) if agent_id else None
    if agent is None:
        return None, None
    return agent, await coordinator.send_message(agent_id, text)


class EventRenderer:
    """把协调器事件渲染到终端"""

    def __init__(self, coordinator: CollaborationCoordinator, display: Display):
        self.coordinator = coordinator
        self.display = display
        # message_id -> 流式输出
        self.streams: Dict[str, StreamDisplay] = {}

    def handle(self, event: Event) -> None:
        if isinstance(event, MessageDeltaEvent):
            stream = self.streams.get(event.message_id)
            if stream is None:
                agent = self.coordinator.get_agent(event.agent_id)
                if agent is None:
                    return
                stream = StreamDisplay(self.display, agent)
                self.streams[event.message_id] = stream
            stream.on_content(event.content)
        elif isinstance(event, ToolUseEvent):
            self.display.tool_use(self.coordinator.get_agent(event.agent_id), event.tool_name)
        elif isinstance(event, TaskStartEvent):
            names = [
                agent.name
                for agent in self.coordinator.agents
                if agent.id in event.target_agent_ids
            ]
            self.display.info(f"协作任务开始: {', '.join(names)}")

    def finish(self) -> List[str]:
        """结束所有流式输出，返回已流式显示的消息 ID"""
        streamed = list(self.streams)
        for stream in self.streams.values():
            stream.finish()
        self.streams.clear()
        return streamed


async def run_with_events(
    job: Awaitable,
    queue: asyncio.Queue,
    handle: Callable[[Event], None],
):
    """等待 job 完成，期间处理事件队列"""
    job = asyncio.ensure_future(job)
    while True:
        getter = asyncio.ensure_future(queue.get())
        done, _ = await asyncio.wait({job, getter}, return_when=asyncio.FIRST_COMPLETED)
        if getter in done:
            handle(getter.result())
        else:
            getter.cancel()
        if job in done:
            break

    while not queue.empty():
        handle(queue.get_nowait())
    return job.result()


def show_result(
    display: Display,
    coordinator: CollaborationCoordinator,
    agent: Optional[Agent],
    result: Union[Message, CollaborationTask, None],
    streamed_ids: List[str],
) -> None:
    if isinstance(result, CollaborationTask):
        display.print()
        display.print("🤝 协作结果", style="bold magenta")
        display.markdown(format_combined_response(result, coordinator.agents))
    elif isinstance(result, Message) and agent is not None:
        if result.id in streamed_ids:
            return
        if is_error_turn(result.content):
            display.agent_header(agent)
            display.error(result.content)
        else:
            display.agent_reply(agent, result.content)


async def interactive_loop(coordinator: CollaborationCoordinator, display: Display):
    """交互循环"""
    commands = Commands(coordinator, display)
    enhanced_input = EnhancedInput(
        commands=commands,
        agent_names=lambda: [agent.name for agent in coordinator.agents],
    )
    renderer = EventRenderer(coordinator, display)
    queue = await coordinator.events.subscribe(RENDERED_EVENTS)

    display.info("输入 /help 查看帮助，/quit 退出")
    display.info("@Name 指定 Agent，多个 @ 或 @all 发起协作")

    try:
        while True:
            current = commands.current_agent
            prompt = f"\n👤 {current.name if current else '你'}: "
            try:
                user_input = (await enhanced_input.prompt_async(prompt)).strip()
            except (EOFError, KeyboardInterrupt):
                display.print("\n👋 再见！")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                should_continue, message = await commands.execute(user_input[1:])
                if message:
                    display.print(message)
                if not should_continue:
                    break
                continue

            agent, result = await run_with_events(
                route_message(coordinator, user_input, commands.current_agent_id),
                queue,
                renderer.handle,
            )
            streamed_ids = renderer.finish()
            show_result(display, coordinator, agent, result, streamed_ids)
    finally:
        await coordinator.events.unsubscribe(queue, RENDERED_EVENTS)


async def run_non_interactive(
    coordinator: CollaborationCoordinator,
    prompt: str,
    output_format: str = "text",
) -> int:
    """非交互模式，返回退出码"""
    agents = coordinator.agents
    current_id = agents[0].id if agents else None
    agent, result = await route_message(coordinator, prompt, current_id)

    if isinstance(result, CollaborationTask):
        text = format_combined_response(result, coordinator.agents)
        names = [a.name for a in coordinator.agents if a.id in result.target_agent_ids]
        # 任何一个分支失败都算失败
        success = not any(is_error_turn(response) for response in result.responses.values())
        output = {"success": success, "task_id": result.id, "agents": names, "result": text}
    elif isinstance(result, Message) and agent is not None:
        text = result.content
        success = not is_error_turn(text)
        output = {"success": success, "agent": agent.name, "result": text}
    else:
        text = "no agent to handle the message"
        success = False
        output = {"success": False, "error": text}

    if output_format == "json":
        print(json.dumps(output, ensure_ascii=False, indent=2))
    else:
        print(text)
    return 0 if success else 1


async def main_async(args: argparse.Namespace) -> int:
    try:
        config = load_config(args)
    except (FileNotFoundError, ConfigError) as e:
        if args.format == "json":
            print(json.dumps({"success": False, "error": str(e)}, ensure_ascii=False))
        else:
            print(f"❌ 配置错误: {e}", file=sys.stderr)
        return 1

    coordinator = CollaborationCoordinator(config=config)

    if args.prompt:
        return await run_non_interactive(coordinator, args.prompt, args.format)

    display = Display()
    backend = coordinator.select_backend()
    if backend is coordinator.cli_backend:
        display.success("使用 Claude CLI 订阅")
    elif backend is not None:
        display.success(f"使用 {config.api.provider} API")
    else:
        display.warning(NO_CONNECTION_MESSAGE)
    display.print(f"已加载 {len(coordinator.agents)} 个 Agent", style="dim")

    await interactive_loop(coordinator, display)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentdock",
        description="AgentDock - 多 Agent 协作终端",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  agentdock                                 # 交互模式
  agentdock -p "@Backend @Frontend 登录页"   # 非交互协作
  agentdock -p "你好" -f json               # JSON 输出
        """,
    )
    parser.add_argument("-p", "--prompt", type=str, help="非交互模式：直接发送一条消息")
    parser.add_argument(
        "-f", "--format",
        choices=["text", "json"],
        default="text",
        help="输出格式 (默认: text)",
    )
    parser.add_argument("--config", type=str, default=None, help="配置文件路径")
    parser.add_argument("--agents-dir", type=str, default=None, help="Agent 定义目录")
    parser.add_argument("--api", action="store_true", help="使用 API 而不是 Claude CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="显示调试日志")
    parser.add_argument(
        "--version",
        action="version",
        version=f"AgentDock v{__version__}",
    )
    return parser


def main(argv: Optional[List[str]] = None):
    """主入口"""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        exit_code = asyncio.run(main_async(args))
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
