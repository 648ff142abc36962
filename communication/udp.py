"""
asyncio UDP implementation of the DatagramSocket interface.

Datagrams received by the protocol are queued and a single drain callback is
scheduled on the loop. The owning role pulls datagrams with recv_from() and
may stop before the queue is empty; leftovers stay queued until the next
datagram arrives and triggers another drain.
"""

import asyncio
import logging
import socket
from collections import deque
from typing import Callable, Deque, Optional, Tuple

from communication.transport import Address
from core.errors import BindFailure


logger = logging.getLogger(__name__)


class _EndpointProtocol(asyncio.DatagramProtocol):
    """Feeds received datagrams into the owning UDPEndpoint."""

    def __init__(self, endpoint: "UDPEndpoint"):
        self.endpoint = endpoint

    def datagram_received(self, data: bytes, addr):
        self.endpoint._enqueue(data, (addr[0], addr[1]))

    def error_received(self, exc: Exception):
        # ICMP port unreachable and friends; delivery is best-effort
        logger.debug(f"UDP error on {self.endpoint.local_address}: {exc}")


class UDPEndpoint:
    """
    Bound UDP socket with a drainable receive queue.

    Create instances with UDPEndpoint.open().
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, max_queue: int = 4096):
        """
        Args:
            loop: Event loop the endpoint runs on
            max_queue: Maximum queued datagrams before new arrivals are dropped
        """
        self.loop = loop
        self.max_queue = max_queue
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.local_address: Optional[Address] = None

        self._queue: Deque[Tuple[bytes, Address]] = deque()
        self._callback: Optional[Callable[["UDPEndpoint"], None]] = None
        self._drain_scheduled = False
        self._dropped = 0

    @classmethod
    async def open(cls, host: str = "0.0.0.0", port: int = 0, allow_broadcast: bool = True) -> "UDPEndpoint":
        """
        Bind a UDP endpoint.

        Args:
            host: Local interface to bind
            port: Local port (0 picks an ephemeral port)
            allow_broadcast: Enable SO_BROADCAST

        Returns:
            Bound UDPEndpoint

        Raises:
            BindFailure: If the socket cannot be bound
        """
        loop = asyncio.get_running_loop()
        endpoint = cls(loop)

        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _EndpointProtocol(endpoint),
                local_addr=(host, port),
                family=socket.AF_INET,
                allow_broadcast=allow_broadcast,
            )
        except OSError as e:
            raise BindFailure(host, port, e) from e

        endpoint.transport = transport
        sockname = transport.get_extra_info("sockname")
        endpoint.local_address = (sockname[0], sockname[1])
        logger.info(f"UDP endpoint bound on {sockname[0]}:{sockname[1]}")
        return endpoint

    def send_to(self, payload: bytes, address: Address) -> None:
        if self.transport is None or self.transport.is_closing():
            logger.debug(f"Dropping send to {address}: endpoint closed")
            return
        self.transport.sendto(payload, address)

    def recv_from(self) -> Optional[Tuple[bytes, Address]]:
        if not self._queue:
            return None
        return self._queue.popleft()

    def set_recv_callback(self, callback: Optional[Callable[["UDPEndpoint"], None]]) -> None:
        self._callback = callback
        if callback is not None and self._queue:
            self._schedule_drain()

    def close(self) -> None:
        self._callback = None
        if self.transport is not None:
            self.transport.close()
            self.transport = None
        if self._dropped:
            logger.info(f"UDP endpoint closed ({self._dropped} datagrams dropped on full queue)")

    def pending(self) -> int:
        """Number of datagrams waiting to be read."""
        return len(self._queue)

    def _enqueue(self, data: bytes, addr: Address):
        if len(self._queue) >= self.max_queue:
            self._dropped += 1
            return
        self._queue.append((data, addr))
        self._schedule_drain()

    def _schedule_drain(self):
        if not self._drain_scheduled:
            self._drain_scheduled = True
            self.loop.call_soon(self._drain)

    def _drain(self):
        self._drain_scheduled = False
        if self._callback is not None and self._queue:
            self._callback(self)
