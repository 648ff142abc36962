"""
Parameter server role.

Counts combined results and broadcasts a completion ack for each one. The
server keeps no per-round state: it trusts the relay to emit each combined
result at most once and never deduplicates.
"""

import logging
from typing import Any, Dict

from communication.messages import (
    CombinedResult,
    CompletionAck,
    Contribution,
    decode,
)
from communication.transport import Address, DatagramSocket, format_address
from core.errors import MalformedMessage
from core.scheduler import Scheduler
from coordinator.config import CoordinatorConfig


logger = logging.getLogger(__name__)


def completion_ack_for(message) -> CompletionAck:
    """
    Build the completion ack for a result-shaped record.

    The ack copies fields 1 and 2 of the record: for RESULT,<job>,<round>
    that is (job, round); for a bare <job>,<part>,<round> it is
    (part, round).
    """
    if isinstance(message, CombinedResult):
        return CompletionAck(part_id=message.job_id, round_id=message.round_id)
    return CompletionAck(part_id=message.part_id, round_id=message.round_id)


class ParameterServer:
    """Terminal role that accepts combined results."""

    def __init__(self, config: CoordinatorConfig, scheduler: Scheduler, socket: DatagramSocket):
        """
        Initialize parameter server.

        Args:
            config: Coordinator configuration
            scheduler: Scheduler (used for event timestamps)
            socket: Datagram socket facing the relay
        """
        self.config = config
        self.scheduler = scheduler
        self.socket = socket

        self.results_received = 0
        self._running = False

        self.stats = {
            'completion_acks_sent': 0,
            'echoes_ignored': 0,
            'malformed': 0,
            'unexpected': 0
        }

    def start(self):
        """Begin handling datagrams."""
        if self._running:
            logger.warning("Parameter server already running")
            return

        self._running = True
        self.socket.set_recv_callback(self.handle_read)
        targets = ", ".join(format_address(a) for a in self.config.broadcast_addresses)
        logger.info(f"{self._now()} PS started (broadcast to {targets})")

    def stop(self):
        """Stop handling datagrams."""
        if not self._running:
            return

        self._running = False
        self.socket.set_recv_callback(None)
        logger.info(f"{self._now()} PS stopped ({self.results_received} results received)")

    def is_running(self) -> bool:
        return self._running

    def handle_read(self, socket: DatagramSocket):
        """Drain every queued datagram."""
        while self._running:
            item = socket.recv_from()
            if item is None:
                break
            payload, sender = item
            self.on_message(payload, sender)

    def on_message(self, payload: bytes, sender: Address):
        """
        Handle one datagram.

        Completion-ack echoes are ignored. Any result-shaped record bumps
        the counter and triggers a completion-ack broadcast.
        """
        if not self._running:
            return

        try:
            message = decode(payload)
        except MalformedMessage as e:
            self.stats['malformed'] += 1
            logger.warning(
                f"{self._now()} PS dropped malformed message from "
                f"{format_address(sender)}: {e.reason}"
            )
            return

        logger.info(f"{self._now()} PS received : {payload.decode('ascii', 'replace').rstrip(chr(0))}")

        if isinstance(message, CompletionAck):
            # Broadcast loops back through the relay
            self.stats['echoes_ignored'] += 1
            return

        if not isinstance(message, (CombinedResult, Contribution)):
            self.stats['unexpected'] += 1
            logger.warning(
                f"{self._now()} PS ignored unexpected {type(message).__name__} "
                f"from {format_address(sender)}"
            )
            return

        self.results_received += 1
        ack = completion_ack_for(message)
        ack_payload = ack.encode()
        for address in self.config.broadcast_addresses:
            self.socket.send_to(ack_payload, address)
            logger.info(
                f"{self._now()} PS sent AACK,{ack.part_id},{ack.round_id} "
                f"( {format_address(address)} )"
            )
        self.stats['completion_acks_sent'] += 1

    def get_status(self) -> Dict[str, Any]:
        """
        Get parameter server status.

        Returns:
            Status dictionary with the result counter and statistics
        """
        return {
            'running': self._running,
            'results_received': self.results_received,
            **self.stats
        }

    def _now(self) -> str:
        return f"{self.scheduler.now():.3f}s"
