"""
Cache and configuration tests
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from premia_quotes.constants import DEFAULT_REFERRER, SupportedChainId
from premia_quotes.data.cache import MemoryCache, cache_key
from premia_quotes.data.config import ConfigManager
from premia_quotes.exceptions import ConfigurationError


class TestMemoryCache:
    def test_set_get(self):
        cache = MemoryCache()
        cache.set("a", 1, ttl=10)
        assert cache.get("a") == 1
        cache.remove("a")
        assert cache.get("a") is None

    def test_expiry(self):
        cache = MemoryCache()
        with patch("premia_quotes.data.cache.time.time", return_value=1000.0):
            cache.set("a", 1, ttl=5)
        with patch("premia_quotes.data.cache.time.time", return_value=1004.0):
            assert cache.get("a") == 1
        with patch("premia_quotes.data.cache.time.time", return_value=1006.0):
            assert cache.get("a") is None
        assert "a" not in cache.store

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            MemoryCache().set("a", 1, ttl=0)

    @pytest.mark.asyncio
    async def test_get_or_set_memoizes(self):
        cache = MemoryCache()
        factory = AsyncMock(return_value={"price": 1})
        assert await cache.get_or_set("k", factory, 10) == {"price": 1}
        assert await cache.get_or_set("k", factory, 10) == {"price": 1}
        factory.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_results_not_cached(self):
        cache = MemoryCache()
        factory = AsyncMock(return_value=None)
        await cache.get_or_set("k", factory, 10)
        await cache.get_or_set("k", factory, 10)
        assert factory.await_count == 2

    @pytest.mark.asyncio
    async def test_disabled_bypasses(self):
        cache = MemoryCache()
        cache.disable()
        factory = AsyncMock(return_value=1)
        await cache.get_or_set("k", factory, 10)
        await cache.get_or_set("k", factory, 10)
        assert factory.await_count == 2
        assert cache.store == {}

    def test_cache_key_distinguishes_args(self):
        assert cache_key("Pool", "quote", 1, True) != cache_key("Pool", "quote", 1, False)


class TestConfigManager:
    @pytest.fixture
    def config_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "chain_id": 421613,
            "rpc_url": "http://localhost:8545",
            "orderbook": {"url": "http://relay", "api_key": "file-key"},
            "addresses": {"421613": {"ERC20_ROUTER": "0x" + "44" * 20}},
            "streams": {"vault_poll_interval": 5},
        }))
        monkeypatch.setenv("PREMIA_CONFIG", str(path))
        for name in ("PREMIA_CHAIN_ID", "PREMIA_RPC_URL", "PREMIA_ORDERBOOK_URL",
                     "PREMIA_ORDERBOOK_WS_URL", "PREMIA_API_KEY", "PREMIA_SUBGRAPH_URL"):
            monkeypatch.delenv(name, raising=False)
        ConfigManager.reset()
        yield path
        ConfigManager.reset()

    def test_dot_access(self, config_file):
        config = ConfigManager()
        assert config.get("orderbook.url") == "http://relay"
        assert config.get("orderbook.missing", "x") == "x"
        assert config.get("rpc_url.nested") is None

    def test_typed_properties(self, config_file):
        config = ConfigManager()
        assert config.chain_id == SupportedChainId.ARBITRUM_GOERLI
        assert config.api_key == "file-key"
        assert config.vault_poll_interval == 5.0
        assert config.quote_ttl == 1

    def test_addresses_merge_defaults(self, config_file):
        config = ConfigManager()
        assert config.addresses["DEFAULT_REFERRER"] == DEFAULT_REFERRER
        assert config.address("ERC20_ROUTER") == "0x" + "44" * 20

    def test_missing_address(self, config_file):
        with pytest.raises(ConfigurationError):
            ConfigManager().address("VAULT_REGISTRY")

    def test_environment_overrides(self, config_file, monkeypatch):
        monkeypatch.setenv("PREMIA_API_KEY", "env-key")
        monkeypatch.setenv("PREMIA_CHAIN_ID", "42161")
        ConfigManager.reset()
        config = ConfigManager()
        assert config.api_key == "env-key"
        assert config.chain_id == 42161

    def test_singleton(self, config_file):
        assert ConfigManager() is ConfigManager()
