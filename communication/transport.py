"""
Datagram transport interface and address helpers.

Roles talk to the network only through a DatagramSocket: best-effort
send_to, a non-blocking recv_from that returns None once the receive queue
is empty, and a read callback fired when datagrams are waiting. Roles drain
the queue inside the callback and may stop early, leaving the rest queued
for the next callback.
"""

from typing import Callable, List, Optional, Protocol, Tuple, Union


Address = Tuple[str, int]

BROADCAST_HOST = "255.255.255.255"


class DatagramSocket(Protocol):
    """Best-effort datagram socket consumed by every role."""

    def send_to(self, payload: bytes, address: Address) -> None:
        ...

    def recv_from(self) -> Optional[Tuple[bytes, Address]]:
        ...

    def set_recv_callback(self, callback: Optional[Callable[["DatagramSocket"], None]]) -> None:
        ...

    def close(self) -> None:
        ...


def parse_address(value: Union[str, Address, List]) -> Address:
    """
    Parse an address given as "host:port" or a (host, port) pair.

    Args:
        value: Address string or pair

    Returns:
        (host, port) tuple

    Raises:
        ValueError: If the address cannot be parsed or the port is invalid
    """
    if isinstance(value, (tuple, list)):
        if len(value) != 2:
            raise ValueError(f"Address must be (host, port), got {value!r}")
        host, port = value
    else:
        host, sep, port = str(value).rpartition(":")
        if not sep or not host:
            raise ValueError(f"Address must be 'host:port', got {value!r}")

    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid port in address {value!r}")

    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in address {value!r}")

    return str(host), port


def format_address(address: Address) -> str:
    """Format a (host, port) pair as "host:port"."""
    return f"{address[0]}:{address[1]}"


def is_broadcast(address: Address) -> bool:
    """Whether the address targets the limited broadcast host."""
    return address[0] == BROADCAST_HOST
