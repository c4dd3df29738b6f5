"""流式 API 后端

- Anthropic Messages 流式接口
- OpenAI 兼容的 Chat Completions 流式接口

两者共享同一套发送逻辑：历史消息转换、增量文本推送、建立连接阶段的重试。
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ..config import Config
from ..retry import RetryConfig, RetryExhaustedError, call_with_retry
from ..schema import Message
from .base import (
    AgentBackend,
    AgentContext,
    APIBackendError,
    ChunkCallback,
    ToolUseCallback,
)

logger = logging.getLogger(__name__)


def convert_history(history: List[Message], prompt: str) -> List[Dict[str, str]]:
    """把对话历史 + 新 prompt 转为 API 消息列表

    跳过空消息 (未完成的占位)，合并连续的同角色消息，保证以 user 开头。
    """
    api_messages: List[Dict[str, str]] = []
    for msg in [*history, Message.user(prompt)]:
        if not msg.content:
            continue
        role = msg.role.value
        if api_messages and api_messages[-1]["role"] == role:
            api_messages[-1]["content"] += f"\n\n{msg.content}"
        else:
            api_messages.append({"role": role, "content": msg.content})

    while api_messages and api_messages[0]["role"] != "user":
        api_messages.pop(0)
    return api_messages


class StreamingAPIBackend(AgentBackend):
    """流式 API 后端基类"""

    error_label = "API Error"

    # 可以重试的异常 (仅在尚未输出任何文本时)
    retryable_exceptions: Tuple[Type[Exception], ...] = ()
    # 转换为 APIBackendError 的异常
    api_exceptions: Tuple[Type[Exception], ...] = ()
    # 可以直接透传给 API 的模型 ID 前缀
    model_prefixes: Tuple[str, ...] = ()

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: Optional[str] = None,
        max_tokens: int = 4096,
        model_aliases: Optional[Dict[str, str]] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base
        self.max_tokens = max_tokens
        self.model_aliases = {k.lower(): v for k, v in (model_aliases or {}).items()}
        self.retry_config = retry_config or RetryConfig()

    def resolve_model(self, agent_model: Optional[str]) -> str:
        """Agent 模型别名 → API 模型 ID"""
        if not agent_model:
            return self.model
        if agent_model.lower() in self.model_aliases:
            return self.model_aliases[agent_model.lower()]
        if agent_model.startswith(self.model_prefixes):
            return agent_model
        return self.model

    @abstractmethod
    def _stream_text(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        model: str,
    ) -> AsyncIterator[str]:
        """打开流并逐段产出文本"""
        pass

    async def send(
        self,
        prompt: str,
        system_prompt: str,
        context: AgentContext,
        on_chunk: Optional[ChunkCallback] = None,
        on_tool_use: Optional[ToolUseCallback] = None,
    ) -> str:
        messages = convert_history(context.history, prompt)
        model = self.resolve_model(context.model)
        emitted = False

        async def attempt() -> str:
            nonlocal emitted
            parts: List[str] = []
            try:
                async for text in self._stream_text(system_prompt, messages, model):
                    if not text:
                        continue
                    parts.append(text)
                    emitted = True
                    if on_chunk:
                        on_chunk(text)
            except self.api_exceptions as e:
                if emitted:
                    raise APIBackendError(f"stream interrupted: {e}") from e
                raise
            return "".join(parts)

        def should_retry(error: Exception) -> bool:
            # 已经推送了文本，重试会导致重复输出
            return not emitted and isinstance(error, self.retryable_exceptions)

        logger.debug(f"API 请求 ({context.agent_name}): model={model}, {len(messages)} 条消息")

        try:
            return await call_with_retry(
                attempt,
                self.retry_config,
                should_retry,
                description=f"{context.agent_name} 的 API 请求",
            )
        except RetryExhaustedError as e:
            raise APIBackendError(str(e.last_exception)) from e
        except self.api_exceptions as e:
            raise APIBackendError(str(e)) from e


class AnthropicStreamingBackend(StreamingAPIBackend):
    """Anthropic Claude 流式后端"""

    retryable_exceptions = (
        anthropic.APIConnectionError,
        anthropic.RateLimitError,
        anthropic.InternalServerError,
    )
    api_exceptions = (anthropic.APIError,)
    model_prefixes = ("claude-",)

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        api_base: Optional[str] = "https://api.anthropic.com",
        max_tokens: int = 4096,
        model_aliases: Optional[Dict[str, str]] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        super().__init__(api_key, model, api_base, max_tokens, model_aliases, retry_config)
        # 重试由 call_with_retry 负责
        self.client = AsyncAnthropic(api_key=api_key, base_url=api_base, max_retries=0)

    async def _stream_text(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        model: str,
    ) -> AsyncIterator[str]:
        params: Dict[str, Any] = {
            "model": model,
            "max_tokens": self.max_tokens,
            "messages": messages,
        }
        if system_prompt:
            params["system"] = system_prompt

        async with self.client.messages.stream(**params) as stream:
            async for text in stream.text_stream:
                yield text


class OpenAIStreamingBackend(StreamingAPIBackend):
    """OpenAI 兼容流式后端"""

    retryable_exceptions = (
        openai.APIConnectionError,
        openai.RateLimitError,
        openai.InternalServerError,
    )
    api_exceptions = (openai.APIError,)
    model_prefixes = ("gpt-", "o1", "o3", "o4")

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        api_base: Optional[str] = "https://api.openai.com/v1",
        max_tokens: int = 4096,
        model_aliases: Optional[Dict[str, str]] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        super().__init__(api_key, model, api_base, max_tokens, model_aliases, retry_config)
        self.client = AsyncOpenAI(api_key=api_key, base_url=api_base, max_retries=0)

    async def _stream_text(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        model: str,
    ) -> AsyncIterator[str]:
        api_messages: List[Dict[str, str]] = []
        if system_prompt:
            api_messages.append({"role": "system", "content": system_prompt})
        api_messages.extend(messages)

        stream = await self.client.chat.completions.create(
            model=model,
            messages=api_messages,
            max_tokens=self.max_tokens,
            stream=True,
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield delta.content
                if chunk.choices[0].finish_reason:
                    break
        finally:
            await stream.close()


def create_api_backend(config: Config, api_key: str) -> StreamingAPIBackend:
    """根据配置创建 API 后端"""
    api = config.api
    if api.provider == "openai":
        return OpenAIStreamingBackend(
            api_key=api_key,
            model=api.model,
            api_base=api.api_base or "https://api.openai.com/v1",
            max_tokens=api.max_tokens,
            model_aliases=api.model_aliases,
            retry_config=config.retry,
        )
    return AnthropicStreamingBackend(
        api_key=api_key,
        model=api.model,
        api_base=api.api_base or "https://api.anthropic.com",
        max_tokens=api.max_tokens,
        model_aliases=api.model_aliases,
        retry_config=config.retry,
    )
