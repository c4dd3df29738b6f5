"""Agent 后端模块"""

from .api_backend import (
    AnthropicStreamingBackend,
    OpenAIStreamingBackend,
    StreamingAPIBackend,
    create_api_backend,
)
from .base import (
    AgentBackend,
    AgentContext,
    APIBackendError,
    BackendError,
    CLIBackendError,
)
from .cli_backend import ClaudeCLIBackend, StreamJsonParser, find_claude_executable

__all__ = [
    # Base
    "AgentBackend",
    "AgentContext",
    "BackendError",
    "CLIBackendError",
    "APIBackendError",
    # Backends
    "ClaudeCLIBackend",
    "StreamJsonParser",
    "find_claude_executable",
    "StreamingAPIBackend",
    "AnthropicStreamingBackend",
    "OpenAIStreamingBackend",
    "create_api_backend",
]
