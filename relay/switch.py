"""
Aggregating relay.

Receives contributions from many workers, acknowledges each one, merges
same-round contributions in an AggregationBuffer and forwards a single
CombinedResult to the coordinator once a round has all of its parts.
Completion acks broadcast by the coordinator are forwarded toward the
workers.

Reads are processed in batches: handle_read() drains the socket until it
is empty or a message asks to end the batch. Two events can end a batch
early, both configurable:

- forwarding a completion ack (forward_ends_batch)
- a buffer overflow under the "abort_batch" overflow policy

Datagrams left in the socket stay queued and are handled by the next read
callback.
"""

import logging
from typing import Any, Dict

from communication.messages import (
    CombinedResult,
    CompletionAck,
    Contribution,
    RoundAck,
    decode,
)
from communication.transport import Address, DatagramSocket, format_address
from core.errors import BufferOverflow, DuplicatePart, MalformedMessage
from core.scheduler import Scheduler
from relay.buffer import AggregationBuffer
from relay.config import RelayConfig


logger = logging.getLogger(__name__)


class AggregatingRelay:
    """
    In-network aggregation point between workers and the parameter server.

    The aggregation buffer is owned by the relay and only mutated from its
    own receive handler.
    """

    def __init__(self, config: RelayConfig, scheduler: Scheduler, socket: DatagramSocket):
        """
        Initialize the relay.

        Args:
            config: Relay configuration
            scheduler: Scheduler (used for event timestamps)
            socket: Datagram socket facing both workers and coordinator
        """
        self.config = config
        self.scheduler = scheduler
        self.socket = socket

        self.buffer = AggregationBuffer(
            max_parts=config.max_parts,
            capacity=config.buffer_capacity
        )
        self.abort_batch_on_overflow = config.overflow_policy == "abort_batch"

        self._running = False

        # Statistics
        self.stats = {
            'received': 0,
            'round_acks_sent': 0,
            'results_sent': 0,
            'completion_acks_forwarded': 0,
            'duplicates': 0,
            'overflows': 0,
            'malformed': 0,
            'unexpected': 0,
            'batches_cut_short': 0
        }

    def start(self):
        """Begin handling datagrams."""
        if self._running:
            logger.warning("Relay already running")
            return

        self._running = True
        self.socket.set_recv_callback(self.handle_read)
        logger.info(
            f"{self._now()} relay started (max_parts {self.config.max_parts}, "
            f"capacity {self.config.buffer_capacity}, overflow policy {self.config.overflow_policy}, "
            f"coordinator {format_address(self.config.coordinator_address)})"
        )

    def stop(self):
        """
        Stop handling datagrams.

        Partially aggregated rounds are left in the buffer.
        """
        if not self._running:
            return

        self._running = False
        self.socket.set_recv_callback(None)
        logger.info(
            f"{self._now()} relay stopped ({len(self.buffer)} rounds still open, "
            f"{self.stats['results_sent']} results sent)"
        )

    def is_running(self) -> bool:
        return self._running

    def handle_read(self, socket: DatagramSocket) -> int:
        """
        Drain queued datagrams until empty or a message ends the batch.

        Returns:
            Number of datagrams consumed
        """
        consumed = 0
        while self._running:
            item = socket.recv_from()
            if item is None:
                break
            consumed += 1
            payload, sender = item
            if not self.on_message(payload, sender):
                self.stats['batches_cut_short'] += 1
                break
        return consumed

    def on_message(self, payload: bytes, sender: Address) -> bool:
        """
        Handle one datagram.

        Args:
            payload: Raw payload
            sender: Address the datagram came from

        Returns:
            True to keep draining the current batch, False to end it
        """
        if not self._running:
            return False

        self.stats['received'] += 1
        logger.debug(f"{self._now()} relay received : {payload!r}")

        try:
            message = decode(payload)
        except MalformedMessage as e:
            self.stats['malformed'] += 1
            logger.warning(
                f"{self._now()} relay dropped malformed message from "
                f"{format_address(sender)}: {e.reason}"
            )
            return True

        if isinstance(message, CompletionAck):
            self._forward_completion_ack(payload, message)
            return not self.config.forward_ends_batch

        if isinstance(message, Contribution):
            return self._handle_contribution(message, sender)

        # RoundAck and CombinedResult are produced by the relay, never consumed
        self.stats['unexpected'] += 1
        logger.warning(
            f"{self._now()} relay ignored unexpected {type(message).__name__} "
            f"from {format_address(sender)}"
        )
        return True

    def get_status(self) -> Dict[str, Any]:
        """
        Get relay status.

        Returns:
            Status dictionary with buffer occupancy and statistics
        """
        return {
            'running': self._running,
            'max_parts': self.config.max_parts,
            'buffer_capacity': self.config.buffer_capacity,
            'open_rounds': [list(key) for key in self.buffer.open_rounds()],
            **self.stats
        }

    def _handle_contribution(self, message: Contribution, sender: Address) -> bool:
        # Every contribution is acknowledged, even one that then overflows
        self.socket.send_to(RoundAck(message.round_id).encode(), sender)
        self.stats['round_acks_sent'] += 1
        logger.info(
            f"{self._now()} relay sent GACK,{message.round_id} ( {format_address(sender)} )"
        )

        try:
            completed = self.buffer.add(message.job_id, message.round_id, message.part_id)
        except BufferOverflow as e:
            self.stats['overflows'] += 1
            logger.warning(f"{self._now()} relay buffer overflow: {e}")
            return not self.abort_batch_on_overflow
        except DuplicatePart as e:
            self.stats['duplicates'] += 1
            logger.warning(f"{self._now()} relay {e}")
            return True

        if completed:
            self._send_result(message.job_id, message.round_id)

        return True

    def _send_result(self, job_id: int, round_id: int):
        result = CombinedResult(job_id, round_id)
        self.socket.send_to(result.encode(), self.config.coordinator_address)
        self.stats['results_sent'] += 1
        logger.info(
            f"{self._now()} relay sent result RESULT,{job_id},{round_id} "
            f"( {format_address(self.config.coordinator_address)} )"
        )

    def _forward_completion_ack(self, payload: bytes, message: CompletionAck):
        for address in self.config.broadcast_addresses:
            self.socket.send_to(payload, address)
        self.stats['completion_acks_forwarded'] += 1
        logger.info(
            f"{self._now()} relay forwarded AACK,{message.part_id},{message.round_id} "
            f"to {len(self.config.broadcast_addresses)} address(es)"
        )

    def _now(self) -> str:
        return f"{self.scheduler.now():.3f}s"
