"""
Error taxonomy for the aggregation protocol.

Every error here is absorbed locally by the role that hits it, except
BindFailure which the process entry points surface as a startup failure.
"""

from typing import Optional, Tuple


class AggNetError(Exception):
    """Base class for all protocol errors."""


class MalformedMessage(AggNetError):
    """A payload had the wrong field count, an unknown marker or a bad id."""

    def __init__(self, payload: bytes, reason: str):
        self.payload = payload
        self.reason = reason
        super().__init__(f"Malformed message {payload!r}: {reason}")


class DuplicatePart(AggNetError):
    """The same part id arrived twice for a round that is still open."""

    def __init__(self, key: Tuple[int, int], part_id: int):
        self.key = key
        self.part_id = part_id
        super().__init__(
            f"Duplicate part {part_id} for job {key[0]} round {key[1]}"
        )


class BufferOverflow(AggNetError):
    """The aggregation buffer is full and a new round would need to open."""

    def __init__(self, key: Tuple[int, int], capacity: int):
        self.key = key
        self.capacity = capacity
        super().__init__(
            f"Aggregation buffer full ({capacity} open rounds), "
            f"cannot open job {key[0]} round {key[1]}"
        )


class BindFailure(AggNetError):
    """A role could not bind its listening socket."""

    def __init__(self, host: str, port: int, cause: Optional[BaseException] = None):
        self.host = host
        self.port = port
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to bind socket on {host}:{port}{detail}")
