"""
AggNet virtual-time simulation

This module runs workers, relay and parameter server on a single thread
against a virtual clock and an in-memory datagram network, reproducing the
dumbbell aggregation experiment deterministically.
"""

__version__ = "0.1.0"
