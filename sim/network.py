"""
In-memory datagram network for simulation.

Endpoints are bound to (host, port) addresses and attached to one or more
named segments. A unicast datagram reaches the endpoint bound to its
destination address; a datagram sent to 255.255.255.255:<port> reaches
every other endpoint bound to <port> that shares a segment with the sender.

Each delivery is a scheduled event after the link delay between the two
hosts. On arrival the datagram is queued and the endpoint's read callback
fires; anything the callback leaves in the queue waits for the next
arrival.
"""

import logging
import random
from collections import deque
from typing import Callable, Deque, Dict, FrozenSet, Iterable, List, Optional, Tuple

from communication.transport import Address, format_address, is_broadcast
from core.errors import BindFailure
from sim.clock import VirtualScheduler


logger = logging.getLogger(__name__)


class SimSocket:
    """Datagram socket attached to a SimNetwork."""

    def __init__(self, network: "SimNetwork", address: Address, segments: FrozenSet[str]):
        self.network = network
        self.address = address
        self.segments = segments

        self._queue: Deque[Tuple[bytes, Address]] = deque()
        self._callback: Optional[Callable[["SimSocket"], None]] = None
        self.closed = False

        self.sent = 0
        self.received = 0

    def send_to(self, payload: bytes, address: Address) -> None:
        if self.closed:
            return
        self.sent += 1
        self.network.transmit(self, bytes(payload), address)

    def recv_from(self) -> Optional[Tuple[bytes, Address]]:
        if not self._queue:
            return None
        return self._queue.popleft()

    def set_recv_callback(self, callback: Optional[Callable[["SimSocket"], None]]) -> None:
        self._callback = callback

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._callback = None
            self.network.unbind(self)

    def pending(self) -> int:
        """Number of datagrams waiting to be read."""
        return len(self._queue)

    def deliver(self, payload: bytes, sender: Address):
        """Queue an arriving datagram and notify the reader."""
        if self.closed:
            return
        self.received += 1
        self._queue.append((payload, sender))
        if self._callback is not None:
            self._callback(self)

    def __repr__(self) -> str:
        return f"SimSocket({format_address(self.address)}, segments={sorted(self.segments)})"


class SimNetwork:
    """
    Best-effort datagram fabric driven by a VirtualScheduler.

    Delivery can be made lossy with loss_rate; losses are drawn from a
    seeded random generator so runs are reproducible.
    """

    def __init__(
        self,
        scheduler: VirtualScheduler,
        default_delay: float = 0.002,
        loss_rate: float = 0.0,
        seed: Optional[int] = None
    ):
        """
        Args:
            scheduler: Virtual-time scheduler delivering datagrams
            default_delay: One-way delay (seconds) for host pairs without
                an explicit link delay
            loss_rate: Probability that any single delivery is dropped
            seed: Random seed for loss decisions
        """
        if not 0.0 <= loss_rate < 1.0:
            raise ValueError("loss_rate must be in [0, 1)")

        self.scheduler = scheduler
        self.default_delay = default_delay
        self.loss_rate = loss_rate
        self._rng = random.Random(seed)

        self._sockets: Dict[Address, SimSocket] = {}
        self._delays: Dict[FrozenSet[str], float] = {}

        self.stats = {
            'transmitted': 0,
            'delivered': 0,
            'lost': 0,
            'unroutable': 0
        }

    def bind(self, address: Address, segments: Iterable[str] = ("default",)) -> SimSocket:
        """
        Bind a socket to an address.

        Raises:
            BindFailure: If the address is already bound
        """
        if address in self._sockets:
            raise BindFailure(address[0], address[1], OSError("address already in use"))

        sock = SimSocket(self, address, frozenset(segments))
        self._sockets[address] = sock
        return sock

    def unbind(self, sock: SimSocket):
        if self._sockets.get(sock.address) is sock:
            del self._sockets[sock.address]

    def set_delay(self, host_a: str, host_b: str, delay: float):
        """Set the one-way delay between two hosts (symmetric)."""
        self._delays[frozenset((host_a, host_b))] = delay

    def delay_between(self, host_a: str, host_b: str) -> float:
        return self._delays.get(frozenset((host_a, host_b)), self.default_delay)

    def transmit(self, source: SimSocket, payload: bytes, destination: Address):
        """Schedule delivery of a datagram to its destination(s)."""
        self.stats['transmitted'] += 1

        for target in self._resolve(source, destination):
            if self.loss_rate and self._rng.random() < self.loss_rate:
                self.stats['lost'] += 1
                logger.debug(
                    f"{self.scheduler.now():.3f}s lost {payload!r} "
                    f"{format_address(source.address)} -> {format_address(target.address)}"
                )
                continue

            delay = self.delay_between(source.address[0], target.address[0])
            self.scheduler.schedule(delay, self._arrive, target, payload, source.address)

    def _resolve(self, source: SimSocket, destination: Address) -> List[SimSocket]:
        if is_broadcast(destination):
            return [
                sock for sock in self._sockets.values()
                if sock is not source
                and sock.address[1] == destination[1]
                and sock.segments & source.segments
            ]

        target = self._sockets.get(destination)
        if target is None:
            self.stats['unroutable'] += 1
            logger.debug(f"No endpoint bound at {format_address(destination)}")
            return []
        return [target]

    def _arrive(self, target: SimSocket, payload: bytes, sender: Address):
        if target.closed:
            return
        self.stats['delivered'] += 1
        target.deliver(payload, sender)
