"""凭证提供者测试"""

from agentdock.credentials import (
    ChainedCredentialProvider,
    EnvCredentialProvider,
    StaticCredentialProvider,
)


class TestStaticCredentialProvider:
    """StaticCredentialProvider 测试"""

    def test_credential(self):
        """测试返回凭证"""
        provider = StaticCredentialProvider("sk-test")
        assert provider.get_credential() == "sk-test"
        assert provider.has_credential()

    def test_placeholder_is_missing(self):
        """测试占位符视为未配置"""
        for value in (None, "", "YOUR_API_KEY_HERE"):
            assert not StaticCredentialProvider(value).has_credential()


class TestEnvCredentialProvider:
    """EnvCredentialProvider 测试"""

    def test_reads_env(self, monkeypatch):
        """测试读取环境变量"""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
        assert EnvCredentialProvider().get_credential() == "sk-env"

    def test_missing_env(self, monkeypatch):
        """测试环境变量不存在"""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert EnvCredentialProvider("OPENAI_API_KEY").get_credential() is None


class TestChainedCredentialProvider:
    """ChainedCredentialProvider 测试"""

    def test_first_available(self, monkeypatch):
        """测试返回第一个可用的凭证"""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
        chain = ChainedCredentialProvider(StaticCredentialProvider(""), EnvCredentialProvider())
        assert chain.get_credential() == "sk-env"

        chain = ChainedCredentialProvider(StaticCredentialProvider("sk-static"), EnvCredentialProvider())
        assert chain.get_credential() == "sk-static"

    def test_none_available(self, monkeypatch):
        """测试都没有时返回 None"""
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        chain = ChainedCredentialProvider(StaticCredentialProvider(None), EnvCredentialProvider())
        assert chain.get_credential() is None
        assert not chain.has_credential()
