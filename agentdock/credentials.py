"""API 凭证提供者

协调器只需要知道“是否配置了凭证”和“取出凭证”，
存储方式由具体实现决定，测试时可直接注入 StaticCredentialProvider。
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Optional

from .config import PLACEHOLDER_KEYS


class CredentialProvider(ABC):
    """凭证提供者抽象基类"""

    @abstractmethod
    def get_credential(self) -> Optional[str]:
        """返回凭证，未配置时返回 None"""
        pass

    def has_credential(self) -> bool:
        return self.get_credential() is not None


class StaticCredentialProvider(CredentialProvider):
    """内存中的凭证"""

    def __init__(self, credential: Optional[str] = None):
        self._credential = credential

    def get_credential(self) -> Optional[str]:
        if self._credential in PLACEHOLDER_KEYS:
            return None
        return self._credential


class EnvCredentialProvider(CredentialProvider):
    """从环境变量读取凭证"""

    def __init__(self, env_var: str = "ANTHROPIC_API_KEY"):
        self.env_var = env_var

    def get_credential(self) -> Optional[str]:
        value = os.environ.get(self.env_var, "")
        if value in PLACEHOLDER_KEYS:
            return None
        return value


class ChainedCredentialProvider(CredentialProvider):
    """依次询问多个提供者，返回第一个可用的凭证"""

    def __init__(self, *providers: CredentialProvider):
        self.providers = list(providers)

    def get_credential(self) -> Optional[str]:
        for provider in self.providers:
            credential = provider.get_credential()
            if credential is not None:
                return credential
        return None
