"""
Relay module for AggNet in-network aggregation.

The aggregating relay sits between workers and the parameter server:
- Acknowledges every contribution back to its sender
- Buffers contributions by (job, round) until every part has arrived
- Forwards one combined result per completed round
- Forwards coordinator completion broadcasts toward the workers
"""

__version__ = "0.1.0"
