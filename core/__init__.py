"""
Core primitives for AggNet in-network aggregation.

Shared by every role:
- Error taxonomy for protocol handling
- Scheduling primitive (schedule after a delay, cancelable)
- Logging setup for the process entry points
"""

__version__ = "0.1.0"
