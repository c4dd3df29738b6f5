"""Agent 定义加载

从目录中读取 ``*.md`` Agent 定义文件：
- YAML front matter 提供 name / description / tools / model / skills
- 正文作为系统提示词
- 目录不存在或没有有效文件时回退到默认 Agent
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, List, Optional, Tuple

import yaml

from .schema import Agent

logger = logging.getLogger(__name__)

DEFAULT_AGENTS_DIR = Path.home() / ".claude" / "agents"


def create_default_agents() -> List[Agent]:
    """创建默认 Agent 列表"""
    return [
        Agent(
            name="Backend",
            role="Backend Developer",
            system_prompt=(
                "You are a backend development specialist. "
                "You handle REST API, GraphQL, database design, authentication, "
                "performance optimization, microservices, and infrastructure code."
            ),
            description="Backend API and server development agent",
            tools=["Read", "Write", "Edit", "Glob", "Grep", "Bash"],
            model="sonnet",
        ),
        Agent(
            name="Frontend",
            role="Frontend Designer",
            system_prompt=(
                "You are a UI/UX design and frontend development specialist. "
                "You handle component design, styling, responsive layouts, accessibility, "
                "animations, and design system architecture."
            ),
            description="UI/UX design and frontend development agent",
            tools=["Read", "Write", "Edit", "Glob", "Grep", "Bash"],
            model="sonnet",
        ),
        Agent(
            name="Researcher",
            role="Tech Researcher",
            system_prompt=(
                "You are a technical research and documentation specialist. "
                "You handle paper analysis, technology trend research, competitor analysis, "
                "library/framework comparisons, and architecture decision records."
            ),
            description="Technical research and documentation agent",
            tools=["Read", "Write", "Glob", "Grep", "WebFetch", "WebSearch"],
            model="sonnet",
        ),
    ]


def split_front_matter(content: str) -> Tuple[Optional[str], str]:
    """拆分 front matter 和正文，没有 front matter 时返回 (None, 原文)"""
    trimmed = content.strip()
    if not trimmed.startswith("---"):
        return None, content

    after_first = trimmed[3:]
    end = after_first.find("\n---")
    if end < 0:
        return None, content

    front_matter = after_first[:end]
    body = after_first[end + len("\n---"):]
    return front_matter, body


def parse_name_list(value: Any) -> List[str]:
    """解析逗号分隔字符串或 YAML 列表"""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = [str(value)]
    return [item.strip() for item in items if item.strip()]


def derive_role(description: str, name: str) -> str:
    """从名称或描述推导简短角色"""
    lower = name.lower()
    if "backend" in lower:
        return "Backend Developer"
    if "frontend" in lower:
        return "Frontend Designer"
    if "research" in lower:
        return "Tech Researcher"

    # 描述的第一句足够短时作为角色
    if "." in description:
        first_sentence = description.split(".", 1)[0].strip()
        if first_sentence and len(first_sentence) < 50:
            return first_sentence
    return "Agent"


def slugify(name: str) -> str:
    return re.sub(r"[\s_]+", "-", name.strip().lower())


class AgentLoader:
    """Agent 定义加载器"""

    def __init__(self, agents_dir: str | Path | None = None):
        self.agents_dir = Path(agents_dir).expanduser() if agents_dir else DEFAULT_AGENTS_DIR

    def load_agents(self) -> List[Agent]:
        """加载所有 Agent，失败或为空时返回默认 Agent"""
        if not self.agents_dir.is_dir():
            logger.debug(f"Agent 目录不存在，使用默认 Agent: {self.agents_dir}")
            return create_default_agents()

        try:
            files = sorted(self.agents_dir.glob("*.md"), key=lambda p: p.name)
        except OSError as e:
            logger.warning(f"读取 Agent 目录失败: {e}")
            return create_default_agents()

        agents = []
        for path in files:
            agent = self.parse_agent_file(path)
            if agent is not None:
                agents.append(agent)

        if not agents:
            return create_default_agents()

        logger.info(f"已从 {self.agents_dir} 加载 {len(agents)} 个 Agent")
        return agents

    def parse_agent_file(self, path: Path) -> Optional[Agent]:
        """解析单个 Agent 定义文件，无效时返回 None"""
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"无法读取 {path}: {e}")
            return None

        front_matter, body = split_front_matter(content)
        if front_matter is None:
            return None

        try:
            fields = yaml.safe_load(front_matter) or {}
        except yaml.YAMLError as e:
            logger.warning(f"front matter 解析失败 {path}: {e}")
            return None

        if not isinstance(fields, dict) or not fields.get("name"):
            return None

        name = str(fields["name"])
        description = str(fields.get("description") or "")

        return Agent(
            name=name.title(),
            role=derive_role(description, name),
            system_prompt=body.strip(),
            description=description,
            tools=parse_name_list(fields.get("tools")),
            model=str(fields.get("model") or "sonnet"),
            skills=parse_name_list(fields.get("skills")),
            file_path=str(path),
        )

    def create_agent_file(
        self,
        name: str,
        description: str,
        system_prompt: str,
        tools: Optional[List[str]] = None,
        model: str = "sonnet",
        skills: Optional[List[str]] = None,
    ) -> Path:
        """写入新的 Agent 定义文件"""
        self.agents_dir.mkdir(parents=True, exist_ok=True)
        path = self.agents_dir / f"{slugify(name)}.md"

        fields = {"name": name.lower(), "description": description}
        if tools:
            fields["tools"] = ", ".join(tools)
        fields["model"] = model
        if skills:
            fields["skills"] = ", ".join(skills)

        front_matter = yaml.safe_dump(fields, sort_keys=False, allow_unicode=True)
        path.write_text(f"---\n{front_matter}---\n\n{system_prompt}", encoding="utf-8")
        logger.info(f"已创建 Agent 定义: {path}")
        return path

    def delete_agent_file(self, file_path: str | Path) -> None:
        """删除 Agent 定义文件"""
        Path(file_path).unlink()
