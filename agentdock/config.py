"""配置管理"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .retry import RetryConfig

DEFAULT_MODEL_ALIASES: Dict[str, str] = {
    "sonnet": "claude-sonnet-4-20250514",
    "opus": "claude-opus-4-20250514",
    "haiku": "claude-3-5-haiku-20241022",
}

DEFAULT_EXTRA_PATHS: List[str] = [
    "~/.local/bin",
    "/usr/local/bin",
    "/opt/homebrew/bin",
]

# API key 占位符，视为未配置
PLACEHOLDER_KEYS = ("", "YOUR_API_KEY_HERE", "YOUR_API_KEY")


class ConfigError(ValueError):
    """配置格式错误"""


@dataclass
class CLIConfig:
    """本地 CLI 后端配置"""

    executable: Optional[str] = None
    permission_mode: str = "bypassPermissions"
    extra_paths: List[str] = field(default_factory=lambda: list(DEFAULT_EXTRA_PATHS))


@dataclass
class APIConfig:
    """流式 API 后端配置"""

    provider: str = "anthropic"
    api_base: Optional[str] = None
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    model_aliases: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MODEL_ALIASES))

    @property
    def api_key_env(self) -> str:
        return "ANTHROPIC_API_KEY" if self.provider == "anthropic" else "OPENAI_API_KEY"


@dataclass
class CollaborationConfig:
    """协作调度配置"""

    # 单次后端调用超时 (秒)，None 表示不限制
    request_timeout: Optional[float] = 300.0
    max_concurrent_agents: int = 5
    max_retained_tasks: int = 50


@dataclass
class Config:
    """主配置"""

    use_subscription: bool = True
    agents_dir: str = "~/.claude/agents"
    api_key: str = ""
    cli: CLIConfig = field(default_factory=CLIConfig)
    api: APIConfig = field(default_factory=APIConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    collaboration: CollaborationConfig = field(default_factory=CollaborationConfig)

    @property
    def agents_path(self) -> Path:
        return Path(self.agents_dir).expanduser()

    @property
    def has_api_key(self) -> bool:
        return self.api_key not in PLACEHOLDER_KEYS

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        """加载配置，未找到配置文件时使用默认值"""
        if config_path is not None:
            if not Path(config_path).exists():
                raise FileNotFoundError(f"config file not found: {config_path}")
            return cls.from_yaml(config_path)

        found = cls.find_config_file("config.yaml")
        if found is None:
            return cls()
        return cls.from_yaml(found)

    @staticmethod
    def find_config_file(filename: str) -> Path | None:
        """查找配置文件"""
        # 优先级: 当前目录 > 包目录 > 用户目录
        search_paths = [
            Path.cwd() / "config" / filename,
            Path.cwd() / "agentdock" / "config" / filename,
            Path.home() / ".agentdock" / "config" / filename,
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> "Config":
        """从 YAML 文件加载配置"""
        with open(config_path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"invalid YAML in {config_path}: {e}") from e

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """从字典创建配置"""
        if not isinstance(data, dict):
            raise ConfigError("config root must be a mapping")

        cli_data = _section(data, "cli")
        cli_config = CLIConfig(
            executable=cli_data.get("executable"),
            permission_mode=cli_data.get("permission_mode", "bypassPermissions"),
            extra_paths=list(cli_data.get("extra_paths", DEFAULT_EXTRA_PATHS)),
        )

        api_data = _section(data, "api")
        provider = str(api_data.get("provider", "anthropic")).lower()
        if provider not in ("anthropic", "openai"):
            raise ConfigError(f"unsupported api.provider: {provider}")

        # sonnet/opus/haiku 别名只对 Anthropic 有意义
        aliases = dict(DEFAULT_MODEL_ALIASES) if provider == "anthropic" else {}
        aliases.update(api_data.get("model_aliases") or {})
        default_model = "claude-sonnet-4-20250514" if provider == "anthropic" else "gpt-4o"
        api_config = APIConfig(
            provider=provider,
            api_base=api_data.get("api_base"),
            model=api_data.get("model", default_model),
            max_tokens=int(api_data.get("max_tokens", 4096)),
            model_aliases=aliases,
        )

        collab_data = _section(data, "collaboration")
        collab_config = CollaborationConfig(
            request_timeout=collab_data.get("request_timeout", 300.0),
            max_concurrent_agents=int(collab_data.get("max_concurrent_agents", 5)),
            max_retained_tasks=int(collab_data.get("max_retained_tasks", 50)),
        )
        if collab_config.max_concurrent_agents < 1:
            raise ConfigError("collaboration.max_concurrent_agents must be >= 1")

        return cls(
            use_subscription=bool(data.get("use_subscription", True)),
            agents_dir=data.get("agents_dir", "~/.claude/agents"),
            api_key=data.get("api_key") or "",
            cli=cli_config,
            api=api_config,
            retry=RetryConfig.from_dict(_section(data, "retry")),
            collaboration=collab_config,
        )


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' section must be a mapping")
    return value
