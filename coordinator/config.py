"""
Coordinator configuration for AggNet.
"""

import json
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

from communication.transport import Address, BROADCAST_HOST, parse_address, format_address


@dataclass
class CoordinatorConfig:
    """
    Configuration for the parameter server.

    broadcast_addresses are where completion acks go; in the dumbbell
    topology that is the relay side of the network, which forwards them on
    to the workers.
    """

    # Datagram side
    listen_host: str = "0.0.0.0"
    listen_port: int = 9002
    broadcast_addresses: List[Address] = field(
        default_factory=lambda: [(BROADCAST_HOST, 9001)]
    )

    # Status API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        """Validate settings and normalize addresses."""
        self.broadcast_addresses = [parse_address(a) for a in self.broadcast_addresses]

        if not self.broadcast_addresses:
            raise ValueError("At least one broadcast address is required")
        if not 0 < self.api_port < 65536:
            raise ValueError(f"api_port out of range: {self.api_port}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            'listen_host': self.listen_host,
            'listen_port': self.listen_port,
            'broadcast_addresses': [format_address(a) for a in self.broadcast_addresses],
            'api_host': self.api_host,
            'api_port': self.api_port,
            'log_level': self.log_level,
            'log_file': self.log_file
        }

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'CoordinatorConfig':
        """Create config from dictionary."""
        return cls(**config_dict)

    @classmethod
    def from_json_file(cls, path: str) -> 'CoordinatorConfig':
        """Load config from JSON file."""
        with open(path, 'r') as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    def to_json_file(self, path: str):
        """Save config to JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
