"""
Worker module for AggNet in-network aggregation.

Workers are the producers that:
- Send one contribution per round for their (job, part) pair
- Pace sends with a relay window and a completion window
- React to relay round acks and coordinator completion acks
"""

__version__ = "0.1.0"
