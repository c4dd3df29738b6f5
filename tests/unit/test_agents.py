"""Agent 定义加载测试"""

import pytest

from agentdock.agents import (
    AgentLoader,
    create_default_agents,
    derive_role,
    parse_name_list,
    split_front_matter,
)

BACKEND_MD = """---
name: backend
description: Builds REST APIs. Knows databases.
tools: Read, Write, Bash
model: opus
skills:
  - sql
  - caching
---

You are the backend agent.
"""


class TestHelpers:
    """辅助函数测试"""

    def test_split_front_matter(self):
        """测试拆分 front matter"""
        front, body = split_front_matter(BACKEND_MD)
        assert "name: backend" in front
        assert body.strip() == "You are the backend agent."

    def test_no_front_matter(self):
        """测试没有 front matter"""
        assert split_front_matter("just text") == (None, "just text")
        assert split_front_matter("---\nunterminated")[0] is None

    @pytest.mark.parametrize("value,expected", [
        ("Read, Write,  Bash", ["Read", "Write", "Bash"]),
        (["Read", " Grep "], ["Read", "Grep"]),
        (None, []),
        ("", []),
    ])
    def test_parse_name_list(self, value, expected):
        """测试解析逗号分隔或列表"""
        assert parse_name_list(value) == expected

    @pytest.mark.parametrize("name,description,expected", [
        ("backend-api", "", "Backend Developer"),
        ("my-frontend", "", "Frontend Designer"),
        ("researcher", "", "Tech Researcher"),
        ("reviewer", "Code reviewer. Checks style.", "Code reviewer"),
        ("writer", "A" * 60 + ". More.", "Agent"),
        ("writer", "no period here", "Agent"),
    ])
    def test_derive_role(self, name, description, expected):
        """测试推导角色"""
        assert derive_role(description, name) == expected


class TestAgentLoader:
    """AgentLoader 测试"""

    def test_missing_dir_uses_defaults(self, tmp_path):
        """测试目录不存在时使用默认 Agent"""
        agents = AgentLoader(tmp_path / "missing").load_agents()
        assert [a.name for a in agents] == [a.name for a in create_default_agents()]

    def test_empty_dir_uses_defaults(self, tmp_path):
        """测试没有有效文件时使用默认 Agent"""
        (tmp_path / "notes.md").write_text("no front matter")
        (tmp_path / "nameless.md").write_text("---\ndescription: x\n---\nbody")
        agents = AgentLoader(tmp_path).load_agents()
        assert [a.name for a in agents] == ["Backend", "Frontend", "Researcher"]

    def test_parse_file(self, tmp_path):
        """测试解析定义文件"""
        path = tmp_path / "backend.md"
        path.write_text(BACKEND_MD)

        agent = AgentLoader(tmp_path).parse_agent_file(path)

        assert agent.name == "Backend"
        assert agent.role == "Backend Developer"
        assert agent.description == "Builds REST APIs. Knows databases."
        assert agent.tools == ["Read", "Write", "Bash"]
        assert agent.skills == ["sql", "caching"]
        assert agent.model == "opus"
        assert agent.system_prompt == "You are the backend agent."
        assert agent.file_path == str(path)

    def test_invalid_yaml_skipped(self, tmp_path):
        """测试 front matter 语法错误的文件被跳过"""
        path = tmp_path / "broken.md"
        path.write_text("---\nname: [oops\n---\nbody")
        assert AgentLoader(tmp_path).parse_agent_file(path) is None

    def test_sorted_by_file_name(self, tmp_path):
        """测试按文件名排序"""
        loader = AgentLoader(tmp_path)
        loader.create_agent_file("zeta", "Last one.", "z")
        loader.create_agent_file("alpha", "First one.", "a")
        assert [a.name for a in loader.load_agents()] == ["Alpha", "Zeta"]

    def test_create_and_delete(self, tmp_path):
        """测试创建和删除定义文件"""
        loader = AgentLoader(tmp_path / "agents")
        path = loader.create_agent_file(
            "Data Analyst",
            "Analyzes data.",
            "Crunch numbers.",
            tools=["Read", "Bash"],
            model="haiku",
            skills=["pandas"],
        )

        assert path.name == "data-analyst.md"
        agent = loader.parse_agent_file(path)
        assert agent.name == "Data Analyst"
        assert agent.tools == ["Read", "Bash"]
        assert agent.skills == ["pandas"]
        assert agent.model == "haiku"
        assert agent.system_prompt == "Crunch numbers."

        loader.delete_agent_file(path)
        assert not path.exists()
