"""
Worker configuration for AggNet.

Defines all configuration parameters for worker sessions.
"""

import json
from dataclasses import dataclass
from typing import Optional, Dict, Any

from communication.transport import Address, parse_address, format_address


COMPLETION_POLICIES = ("observed", "tracking")


@dataclass
class WorkerConfig:
    """
    Configuration for one worker session.

    A worker contributes rounds for a single (job, part) pair and is paced by
    two windows: relay_window bounds sending relative to the last round the
    relay acknowledged, ack_window bounds it relative to the last round the
    coordinator confirmed complete.
    """

    # Identity
    job_id: int = 0
    part_id: int = 0

    # Pacing
    max_rounds: int = 100  # 0 means unlimited
    pacing_interval: float = 1.0  # seconds between an ack and the next send
    ack_window: int = 15
    relay_window: int = 5

    # "observed": completion acks never advance last_completion
    # "tracking": completion acks advance last_completion and may resume sending
    completion_policy: str = "observed"

    # Network settings
    listen_host: str = "0.0.0.0"
    listen_port: int = 9000
    relay_address: Address = ("127.0.0.1", 9001)

    # Run-time limit for the process entry point (None = until done or signalled)
    run_seconds: Optional[float] = None

    # Logging
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR
    log_file: Optional[str] = None

    def __post_init__(self):
        """Validate settings and normalize addresses."""
        self.relay_address = parse_address(self.relay_address)

        if self.job_id < 0 or self.part_id < 0:
            raise ValueError("job_id and part_id must be non-negative")
        if self.max_rounds < 0:
            raise ValueError("max_rounds must be >= 0 (0 means unlimited)")
        if self.pacing_interval < 0:
            raise ValueError("pacing_interval must be >= 0")
        if self.ack_window < 1 or self.relay_window < 1:
            raise ValueError("ack_window and relay_window must be >= 1")
        if self.completion_policy not in COMPLETION_POLICIES:
            raise ValueError(
                f"completion_policy must be one of {COMPLETION_POLICIES}, "
                f"got {self.completion_policy!r}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert config to dictionary.

        Returns:
            Configuration as dictionary
        """
        return {
            'job_id': self.job_id,
            'part_id': self.part_id,
            'max_rounds': self.max_rounds,
            'pacing_interval': self.pacing_interval,
            'ack_window': self.ack_window,
            'relay_window': self.relay_window,
            'completion_policy': self.completion_policy,
            'listen_host': self.listen_host,
            'listen_port': self.listen_port,
            'relay_address': format_address(self.relay_address),
            'run_seconds': self.run_seconds,
            'log_level': self.log_level,
            'log_file': self.log_file
        }

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'WorkerConfig':
        """
        Create config from dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            WorkerConfig instance
        """
        return cls(**config_dict)

    @classmethod
    def from_json_file(cls, path: str) -> 'WorkerConfig':
        """
        Load config from JSON file.

        Args:
            path: Path to JSON config file

        Returns:
            WorkerConfig instance
        """
        with open(path, 'r') as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    def to_json_file(self, path: str):
        """
        Save config to JSON file.

        Args:
            path: Path to save JSON config
        """
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"WorkerConfig(job={self.job_id}, part={self.part_id}, "
            f"relay='{format_address(self.relay_address)}', "
            f"windows=({self.relay_window}, {self.ack_window}), "
            f"policy='{self.completion_policy}')"
        )
