"""重试机制

流式请求一旦推送过文本就不能再重试，所以每次失败是否重试由调用方的判断函数决定，
这里只负责计数和指数退避。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """重试耗尽异常"""

    def __init__(self, last_exception: Exception, attempts: int):
        self.last_exception = last_exception
        self.attempts = attempts
        super().__init__(f"gave up after {attempts} attempts: {last_exception}")


@dataclass
class RetryConfig:
    """重试配置 (config.yaml 的 retry 段)"""

    enabled: bool = True
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        """第 attempt 次重试前的等待秒数 (从 0 开始)"""
        delay = self.initial_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "RetryConfig":
        data = data or {}
        return cls(
            enabled=data.get("enabled", True),
            max_retries=data.get("max_retries", 3),
            initial_delay=data.get("initial_delay", 1.0),
            max_delay=data.get("max_delay", 60.0),
            exponential_base=data.get("exponential_base", 2.0),
        )


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    should_retry: Callable[[Exception], bool],
    description: str = "请求",
) -> T:
    """调用 func，失败且 should_retry 返回 True 时退避后重新调用

    Raises:
        RetryExhaustedError: 可重试的失败超过 max_retries 次
        Exception: 关闭重试或 should_retry 返回 False 时原样抛出
    """
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            if not config.enabled or not should_retry(e):
                raise
            if attempt >= config.max_retries:
                raise RetryExhaustedError(e, attempt + 1) from e

            delay = config.calculate_delay(attempt)
            attempt += 1
            logger.warning(f"{description}失败，{delay:g} 秒后第 {attempt} 次重试: {e}")
            await asyncio.sleep(delay)
