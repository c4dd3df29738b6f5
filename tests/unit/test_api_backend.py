"""流式 API 后端测试"""

from types import SimpleNamespace

import anthropic
import httpx
import pytest

from agentdock.backends import (
    AgentContext,
    AnthropicStreamingBackend,
    APIBackendError,
    OpenAIStreamingBackend,
    StreamingAPIBackend,
    create_api_backend,
)
from agentdock.backends.api_backend import convert_history
from agentdock.config import Config
from agentdock.retry import RetryConfig
from agentdock.schema import Message


class FlakyError(Exception):
    """测试用网络错误"""


class ScriptedBackend(StreamingAPIBackend):
    """按脚本产出文本或抛出异常"""

    retryable_exceptions = (FlakyError,)
    api_exceptions = (FlakyError,)
    model_prefixes = ("test-",)

    def __init__(self, scripts, retry_config=None):
        super().__init__(
            api_key="key",
            model="test-default",
            model_aliases={"fast": "test-fast"},
            retry_config=retry_config or RetryConfig(initial_delay=0, max_retries=2),
        )
        self.scripts = list(scripts)
        self.requests = []

    async def _stream_text(self, system_prompt, messages, model):
        self.requests.append({"system": system_prompt, "messages": messages, "model": model})
        for item in self.scripts.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item


def make_context(history=None, model="sonnet"):
    return AgentContext(agent_id="a1", agent_name="Backend", model=model, history=history or [])


class TestConvertHistory:
    """历史消息转换测试"""

    def test_appends_prompt(self):
        """测试追加新 prompt"""
        history = [Message.user("hi"), Message.assistant("hello")]
        assert convert_history(history, "next") == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "next"},
        ]

    def test_skips_empty_and_merges(self):
        """测试跳过空占位并合并连续同角色消息"""
        history = [Message.user("one"), Message.assistant(""), Message.user("two")]
        assert convert_history(history, "three") == [
            {"role": "user", "content": "one\n\ntwo\n\nthree"},
        ]

    def test_starts_with_user(self):
        """测试去掉开头的 assistant 消息"""
        history = [Message.assistant("orphan")]
        assert convert_history(history, "hi") == [{"role": "user", "content": "hi"}]


class TestStreamingAPIBackend:
    """发送逻辑测试"""

    @pytest.mark.asyncio
    async def test_streams_chunks(self):
        """测试增量推送并返回完整文本"""
        backend = ScriptedBackend([["Hel", "", "lo"]])
        chunks = []

        text = await backend.send("hi", "sys", make_context(), on_chunk=chunks.append)

        assert text == "Hello"
        assert chunks == ["Hel", "lo"]
        assert backend.requests[0]["system"] == "sys"
        assert backend.requests[0]["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_retry_before_output(self):
        """测试尚未输出时重试"""
        backend = ScriptedBackend([[FlakyError("reset")], ["ok"]])

        assert await backend.send("hi", "", make_context()) == "ok"
        assert len(backend.requests) == 2

    @pytest.mark.asyncio
    async def test_no_retry_after_output(self):
        """测试已输出文本后中断不重试"""
        backend = ScriptedBackend([["partial", FlakyError("reset")], ["again"]])
        chunks = []

        with pytest.raises(APIBackendError) as exc_info:
            await backend.send("hi", "", make_context(), on_chunk=chunks.append)

        assert exc_info.value.message == "stream interrupted: reset"
        assert chunks == ["partial"]
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_retry_exhausted(self):
        """测试重试耗尽"""
        backend = ScriptedBackend([[FlakyError("down")]] * 3)

        with pytest.raises(APIBackendError) as exc_info:
            await backend.send("hi", "", make_context())

        assert exc_info.value.message == "down"
        assert len(backend.requests) == 3

    @pytest.mark.asyncio
    async def test_retry_disabled(self):
        """测试关闭重试"""
        backend = ScriptedBackend(
            [[FlakyError("down")], ["never"]],
            retry_config=RetryConfig(enabled=False),
        )

        with pytest.raises(APIBackendError):
            await backend.send("hi", "", make_context())
        assert len(backend.requests) == 1

    def test_resolve_model(self):
        """测试模型解析"""
        backend = ScriptedBackend([])
        assert backend.resolve_model("fast") == "test-fast"
        assert backend.resolve_model("FAST") == "test-fast"
        assert backend.resolve_model("test-custom") == "test-custom"
        assert backend.resolve_model("unknown") == "test-default"
        assert backend.resolve_model(None) == "test-default"


class FakeAnthropicStream:
    def __init__(self, texts, error=None):
        self.texts = texts
        self.error = error

    async def __aenter__(self):
        if self.error:
            raise self.error
        return self

    async def __aexit__(self, *args):
        return False

    @property
    def text_stream(self):
        async def generate():
            for text in self.texts:
                yield text

        return generate()


class FakeAnthropicMessages:
    def __init__(self, streams):
        self.streams = list(streams)
        self.params = []

    def stream(self, **params):
        self.params.append(params)
        return self.streams.pop(0)


class TestAnthropicStreamingBackend:
    """Anthropic 后端测试"""

    @pytest.mark.asyncio
    async def test_stream(self):
        """测试流式请求参数和输出"""
        backend = AnthropicStreamingBackend(
            api_key="sk-test",
            model_aliases={"sonnet": "claude-sonnet-4-20250514"},
        )
        messages = FakeAnthropicMessages([FakeAnthropicStream(["Hi", " there"])])
        backend.client = SimpleNamespace(messages=messages)

        text = await backend.send("hello", "be nice", make_context(model="sonnet"))

        assert text == "Hi there"
        params = messages.params[0]
        assert params["model"] == "claude-sonnet-4-20250514"
        assert params["system"] == "be nice"
        assert params["messages"] == [{"role": "user", "content": "hello"}]

    @pytest.mark.asyncio
    async def test_connection_error_retried(self):
        """测试连接错误重试"""
        backend = AnthropicStreamingBackend(
            api_key="sk-test",
            retry_config=RetryConfig(initial_delay=0, max_retries=1),
        )
        error = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
        messages = FakeAnthropicMessages([
            FakeAnthropicStream([], error=error),
            FakeAnthropicStream(["recovered"]),
        ])
        backend.client = SimpleNamespace(messages=messages)

        assert await backend.send("hello", "", make_context()) == "recovered"
        assert len(messages.params) == 2

    @pytest.mark.asyncio
    async def test_connection_error_exhausted(self):
        """测试连接错误耗尽后转换为 APIBackendError"""
        backend = AnthropicStreamingBackend(
            api_key="sk-test",
            retry_config=RetryConfig(initial_delay=0, max_retries=0),
        )
        error = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        )
        backend.client = SimpleNamespace(messages=FakeAnthropicMessages([FakeAnthropicStream([], error=error)]))

        with pytest.raises(APIBackendError):
            await backend.send("hello", "", make_context())


class FakeOpenAIStream:
    def __init__(self, deltas):
        self.deltas = deltas
        self.closed = False

    def __aiter__(self):
        async def generate():
            for content, finish in self.deltas:
                delta = SimpleNamespace(content=content)
                yield SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish)])

        return generate()

    async def close(self):
        self.closed = True


class TestOpenAIStreamingBackend:
    """OpenAI 兼容后端测试"""

    @pytest.mark.asyncio
    async def test_stream(self):
        """测试系统提示词作为 system 消息，流结束后关闭"""
        backend = OpenAIStreamingBackend(api_key="sk-test", model="gpt-4o")
        stream = FakeOpenAIStream([("Hel", None), (None, None), ("lo", "stop"), ("ignored", None)])
        requests = []

        async def create(**params):
            requests.append(params)
            return stream

        backend.client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=create))
        )

        text = await backend.send("hi", "sys", make_context(model="sonnet"))

        assert text == "Hello"
        assert stream.closed
        assert requests[0]["model"] == "gpt-4o"
        assert requests[0]["stream"] is True
        assert requests[0]["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]


class TestCreateAPIBackend:
    """后端工厂测试"""

    def test_anthropic_default(self):
        """测试默认 Anthropic"""
        backend = create_api_backend(Config(), "sk-test")
        assert isinstance(backend, AnthropicStreamingBackend)
        assert backend.resolve_model("opus") == Config().api.model_aliases["opus"]

    def test_openai(self):
        """测试 OpenAI provider"""
        config = Config.from_dict({"api": {"provider": "openai"}})
        backend = create_api_backend(config, "sk-test")
        assert isinstance(backend, OpenAIStreamingBackend)
        assert backend.model == "gpt-4o"
        assert backend.resolve_model("sonnet") == "gpt-4o"

    def test_retry_config_applied(self):
        """测试重试配置"""
        config = Config.from_dict({"retry": {"max_retries": 7}})
        backend = create_api_backend(config, "sk-test")
        assert backend.retry_config.max_retries == 7
        assert backend.retry_config is config.retry
