
import os
import json
import logging
from typing import Dict, Any, Optional
from pathlib import Path

from dotenv import load_dotenv

from ..constants import ADDRESSES, CacheTTL, SupportedChainId, VAULT_POLL_INTERVAL
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Environment variables that override config.json entries
ENV_OVERRIDES = {
    "PREMIA_CHAIN_ID": "chain_id",
    "PREMIA_RPC_URL": "rpc_url",
    "PREMIA_ORDERBOOK_URL": "orderbook.url",
    "PREMIA_ORDERBOOK_WS_URL": "orderbook.ws_url",
    "PREMIA_API_KEY": "orderbook.api_key",
    "PREMIA_SUBGRAPH_URL": "subgraph_url",
}


class ConfigManager:
    """
    Centralized configuration manager.
    Singleton pattern to load and access config settings.
    """
    _instance = None
    _config: Dict[str, Any] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._load_config()
        return cls._instance

    @classmethod
    def reset(cls):
        """Drop the singleton so the next access reloads file and environment"""
        cls._instance = None

    def _load_config(self):
        """Load configuration from JSON file and env vars"""
        load_dotenv()
        try:
            # Default path: project_root/config/config.json
            base_path = Path(__file__).parent.parent.parent
            config_path = Path(os.getenv("PREMIA_CONFIG", base_path / "config" / "config.json"))

            if config_path.exists():
                with open(config_path, "r") as f:
                    self._config = json.load(f)
                logger.info(f"Loaded config from {config_path}")
            else:
                logger.warning(f"Config file not found at {config_path}. Using defaults.")
                self._config = {}

        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config: {e}")
            self._config = {}

        for env_name, key in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by key (dot notation supported)"""
        keys = key.split(".")
        value = self._config

        try:
            for k in keys:
                value = value.get(k)
                if value is None:
                    return default
            return value
        except AttributeError:
            return default

    def set(self, key: str, value: Any):
        keys = key.split(".")
        node = self._config
        for k in keys[:-1]:
            node = node.setdefault(k, {})
        node[keys[-1]] = value

    # Type-safe getters for specific sections

    @property
    def chain_id(self) -> int:
        return int(self.get("chain_id", SupportedChainId.ARBITRUM))

    @property
    def rpc_url(self) -> Optional[str]:
        return self.get("rpc_url")

    @property
    def subgraph_url(self) -> Optional[str]:
        return self.get("subgraph_url")

    @property
    def orderbook_url(self) -> Optional[str]:
        return self.get("orderbook.url")

    @property
    def orderbook_ws_url(self) -> Optional[str]:
        return self.get("orderbook.ws_url")

    @property
    def api_key(self) -> Optional[str]:
        return self.get("orderbook.api_key")

    @property
    def vault_poll_interval(self) -> float:
        return float(self.get("streams.vault_poll_interval", VAULT_POLL_INTERVAL))

    @property
    def quote_ttl(self) -> int:
        return int(self.get("cache.quote_ttl", CacheTTL.SECOND))

    @property
    def addresses(self) -> Dict[str, str]:
        # Per-chain defaults, then whatever config.json declares for the chain
        merged = dict(ADDRESSES.get(self.chain_id, {}))
        merged.update(self.get(f"addresses.{self.chain_id}", {}))
        return merged

    def address(self, name: str) -> str:
        value = self.addresses.get(name)
        if not value:
            raise ConfigurationError(f"No {name} address configured for chain {self.chain_id}")
        return value
