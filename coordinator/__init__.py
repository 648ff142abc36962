"""
Coordinator module for AggNet in-network aggregation.

The coordinator (parameter server) is responsible for:
- Counting combined results forwarded by the relay
- Broadcasting a completion ack toward every worker
- Exposing its counters through a small REST status API
"""

__version__ = "0.1.0"
