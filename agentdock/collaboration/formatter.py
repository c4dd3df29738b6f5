"""协作结果合并"""

from __future__ import annotations

from typing import Iterable, Mapping, Union

from ..schema import Agent, CollaborationTask

SECTION_SEPARATOR = "\n\n---\n\n"


def format_combined_response(
    task: CollaborationTask,
    agents: Union[Iterable[Agent], Mapping[str, Agent]],
) -> str:
    """按 mention 顺序合并各 Agent 的回复

    顺序由 task.target_agent_ids 决定，与回复到达的先后无关。
    没有回复或已不在名册中的 Agent 被跳过。
    """
    if isinstance(agents, Mapping):
        roster = dict(agents)
    else:
        roster = {agent.id: agent for agent in agents}

    sections = []
    for agent_id in task.target_agent_ids:
        agent = roster.get(agent_id)
        response = task.responses.get(agent_id)
        if agent is None or response is None:
            continue
        sections.append(f"[{agent.name} - {agent.role}]\n{response}")

    return SECTION_SEPARATOR.join(sections)
