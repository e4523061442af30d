"""
Bridge configuration.
One configured network and one derivation path per session.
"""
from typing import Dict, Optional
from dataclasses import dataclass, asdict
import json
import os


DEFAULT_DERIVATION_PATH = "44'/60'/0'/0/0"
DEFAULT_RPC_TIMEOUT = 10.0


@dataclass
class BridgeConfig:
    """Configuration for a single bridge session."""
    chain_id: int
    rpc_url: str
    derivation_path: str = DEFAULT_DERIVATION_PATH
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    name: Optional[str] = None

    def __post_init__(self):
        if not self.rpc_url:
            raise ValueError("RPC URL cannot be empty")
        if self.chain_id <= 0:
            raise ValueError(f"Invalid chain id: {self.chain_id}")
        if self.rpc_timeout <= 0:
            raise ValueError(f"Invalid RPC timeout: {self.rpc_timeout}")

    @property
    def hex_chain_id(self) -> str:
        """Chain id as a JSON-RPC quantity (e.g. ``0xaa36a7``)."""
        return hex(self.chain_id)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'BridgeConfig':
        """Create from dictionary."""
        return cls(**data)

    @classmethod
    def for_network(cls, network_name: str, **overrides) -> 'BridgeConfig':
        """
        Build a config from one of the built-in networks.

        Args:
            network_name: Key in DEFAULT_NETWORKS (e.g. "sepolia")
            **overrides: Field values replacing the defaults (e.g. rpc_url)

        Raises:
            KeyError: If the network is not known
        """
        if network_name not in DEFAULT_NETWORKS:
            raise KeyError(f"Network '{network_name}' not configured")
        data = dict(DEFAULT_NETWORKS[network_name])
        data.update(overrides)
        return cls.from_dict(data)

    # ============================================
    # JSON Persistence
    # ============================================

    def save_to_json(self, path: str):
        """
        Save configuration to JSON file.

        Args:
            path: Destination file
        """
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load_from_json(cls, path: str) -> 'BridgeConfig':
        """
        Load configuration from JSON file.

        Args:
            path: Source file

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))

    def __repr__(self):
        return f"<BridgeConfig chain={self.chain_id} rpc={self.rpc_url} path={self.derivation_path}>"


DEFAULT_NETWORKS: Dict[str, dict] = {
    "mainnet": {
        "chain_id": 1,
        "rpc_url": "https://eth.llamarpc.com",
        "name": "Ethereum Mainnet",
    },
    "sepolia": {
        "chain_id": 11155111,
        "rpc_url": "https://rpc.sepolia.org",
        "name": "Sepolia Testnet",
    },
}
