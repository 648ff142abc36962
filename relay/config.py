"""
Relay configuration for AggNet.
"""

import json
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

from communication.transport import Address, BROADCAST_HOST, parse_address, format_address


OVERFLOW_POLICIES = ("abort_batch", "drop_one")


@dataclass
class RelayConfig:
    """
    Configuration for the aggregating relay.

    max_parts is the number of distinct parts that complete a round;
    buffer_capacity bounds how many rounds may be open at once.
    """

    # Aggregation
    max_parts: int = 1
    buffer_capacity: int = 10

    # What to do when a contribution would open a round beyond capacity:
    # "abort_batch" stops draining the current read batch,
    # "drop_one" discards only the offending contribution
    overflow_policy: str = "abort_batch"

    # Whether forwarding a completion ack also ends the current read batch
    forward_ends_batch: bool = True

    # Network settings
    listen_host: str = "0.0.0.0"
    listen_port: int = 9001
    coordinator_address: Address = ("127.0.0.1", 9002)
    broadcast_addresses: List[Address] = field(
        default_factory=lambda: [(BROADCAST_HOST, 9000)]
    )

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        """Validate settings and normalize addresses."""
        self.coordinator_address = parse_address(self.coordinator_address)
        self.broadcast_addresses = [parse_address(a) for a in self.broadcast_addresses]

        if self.max_parts < 1:
            raise ValueError("max_parts must be >= 1")
        if self.buffer_capacity < 1:
            raise ValueError("buffer_capacity must be >= 1")
        if self.overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(
                f"overflow_policy must be one of {OVERFLOW_POLICIES}, "
                f"got {self.overflow_policy!r}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            'max_parts': self.max_parts,
            'buffer_capacity': self.buffer_capacity,
            'overflow_policy': self.overflow_policy,
            'forward_ends_batch': self.forward_ends_batch,
            'listen_host': self.listen_host,
            'listen_port': self.listen_port,
            'coordinator_address': format_address(self.coordinator_address),
            'broadcast_addresses': [format_address(a) for a in self.broadcast_addresses],
            'log_level': self.log_level,
            'log_file': self.log_file
        }

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'RelayConfig':
        """Create config from dictionary."""
        return cls(**config_dict)

    @classmethod
    def from_json_file(cls, path: str) -> 'RelayConfig':
        """Load config from JSON file."""
        with open(path, 'r') as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    def to_json_file(self, path: str):
        """Save config to JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
