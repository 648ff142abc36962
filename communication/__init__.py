"""
Communication module for AggNet in-network aggregation.

Provides the wire codec and transport layers for:
- Contributions: worker -> relay
- Round acks: relay -> worker
- Combined results: relay -> parameter server
- Completion acks: parameter server -> relay -> workers
"""

from communication.messages import (
    Contribution,
    RoundAck,
    CompletionAck,
    CombinedResult,
    decode,
)
from communication.transport import parse_address, format_address

__version__ = "0.1.0"

__all__ = [
    "Contribution",
    "RoundAck",
    "CompletionAck",
    "CombinedResult",
    "decode",
    "parse_address",
    "format_address",
]
