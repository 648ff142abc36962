"""
Shared fixtures for AggNet tests.
"""

from collections import deque
from typing import List, Optional, Tuple

import pytest

from sim.clock import VirtualScheduler


class RecordingSocket:
    """DatagramSocket double that records sends and queues inbound datagrams."""

    def __init__(self, address=("10.0.0.1", 9)):
        self.address = address
        self.sent: List[Tuple[bytes, Tuple[str, int]]] = []
        self.inbox = deque()
        self.callback = None
        self.closed = False

    def send_to(self, payload, address):
        self.sent.append((bytes(payload), address))

    def recv_from(self) -> Optional[Tuple[bytes, Tuple[str, int]]]:
        if not self.inbox:
            return None
        return self.inbox.popleft()

    def set_recv_callback(self, callback):
        self.callback = callback

    def close(self):
        self.closed = True

    def queue(self, payload: bytes, sender=("10.2.1.1", 9)):
        """Queue a datagram without firing the read callback."""
        self.inbox.append((payload, sender))

    def deliver(self, payload: bytes, sender=("10.2.1.1", 9)):
        """Queue a datagram and fire the read callback like a transport would."""
        self.queue(payload, sender)
        if self.callback is not None:
            self.callback(self)

    def payloads(self) -> List[bytes]:
        return [payload for payload, _ in self.sent]

    def payloads_to(self, address) -> List[bytes]:
        return [payload for payload, dst in self.sent if dst == address]


@pytest.fixture
def scheduler():
    """Fresh virtual-time scheduler."""
    return VirtualScheduler()


@pytest.fixture
def socket():
    """Recording socket double."""
    return RecordingSocket()
