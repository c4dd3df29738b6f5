"""系统提示词构建

- 团队感知块：每次发送都附加，列出全部 Agent 的名称和角色
- 协作上下文：只在多 Agent 协作时附加，列出本次任务的队友
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from ..schema import Agent


def build_team_awareness(current: Agent, agents: Iterable[Agent]) -> str:
    """构建团队感知块"""
    lines = ["[Team]"]
    for agent in agents:
        marker = " (you)" if agent.id == current.id else ""
        lines.append(f"- {agent.name}: {agent.role}{marker}")

    lines.append("")
    lines.append(f"You are {current.name}, the team's {current.role}.")
    lines.append(f"Assigned model: {current.model or 'default'}.")
    tools = ", ".join(current.tools) if current.tools else "none"
    lines.append(f"Available tools: {tools}.")
    lines.append(
        "If a request falls outside your specialty, say so and name the teammate "
        "(as @Name) who should handle that part."
    )
    return "\n".join(lines)


def build_collaboration_context(
    current: Agent,
    agents: Iterable[Agent],
    mentioned_ids: Iterable[str],
) -> str:
    """构建协作上下文，没有队友时返回空字符串"""
    mentioned = set(mentioned_ids)
    teammates = [a for a in agents if a.id in mentioned and a.id != current.id]
    if not teammates:
        return ""

    team_info = ", ".join(f"{a.name} ({a.role})" for a in teammates)
    return (
        "[Collaboration Mode]\n"
        f"This task is assigned to multiple agents: you and {team_info}.\n"
        f"Focus on your specialty ({current.role}). "
        "Be concise: your response will be combined with the others."
    )


def build_system_prompt(
    current: Agent,
    agents: Iterable[Agent],
    mentioned_ids: Optional[Iterable[str]] = None,
) -> str:
    """基础提示词 + 团队感知块 (+ 协作上下文)"""
    agents = list(agents)
    sections: List[str] = []
    if current.system_prompt:
        sections.append(current.system_prompt)
    sections.append(build_team_awareness(current, agents))

    if mentioned_ids is not None:
        collaboration = build_collaboration_context(current, agents, mentioned_ids)
        if collaboration:
            sections.append(collaboration)

    return "\n\n".join(sections)
