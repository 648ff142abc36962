"""
Worker pacing state machine.

A session produces the rounds of one (job, part) pair and sends them to the
relay. Pacing is driven entirely by acknowledgments: every RoundAck moves
the window forward and may schedule exactly one more send. There is no
timer-based retransmission, so a lost RoundAck stalls the session until
something external unblocks it.

The send boundary is

    min(last_ack + relay_window, last_completion + ack_window)

and the next round is sent only while sent <= boundary.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from communication.messages import (
    CombinedResult,
    CompletionAck,
    Contribution,
    RoundAck,
    decode,
)
from communication.transport import Address, DatagramSocket, format_address
from core.errors import MalformedMessage
from core.scheduler import EventHandle, Scheduler
from worker.config import WorkerConfig


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Lifecycle of a worker session."""
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_ACK = "awaiting_ack"
    STOPPED = "stopped"


class WorkerSession:
    """
    Dual-window pacing for one worker.

    All state is owned by the session and only mutated by its own send path
    and receive handler.
    """

    def __init__(
        self,
        config: WorkerConfig,
        scheduler: Scheduler,
        socket: DatagramSocket,
        on_finished: Optional[Callable[["WorkerSession"], None]] = None
    ):
        """
        Initialize worker session.

        Args:
            config: Worker configuration
            scheduler: Scheduler used for pacing sends
            socket: Datagram socket connected toward the relay
            on_finished: Called once every round has been sent and acknowledged
        """
        self.config = config
        self.scheduler = scheduler
        self.socket = socket
        self.on_finished = on_finished

        self.job_id = config.job_id
        self.part_id = config.part_id
        self.relay_address: Address = config.relay_address
        self.max_rounds = config.max_rounds
        self.ack_window = config.ack_window
        self.relay_window = config.relay_window
        self.track_completions = config.completion_policy == "tracking"

        # Window state
        self.sent = 0
        self.last_ack = 0
        self.last_completion = 0
        self.state = WorkerState.IDLE

        self._send_event: Optional[EventHandle] = None
        self._finished_reported = False

        # Statistics
        self.stats = {
            'contributions_sent': 0,
            'round_acks': 0,
            'completion_acks': 0,
            'malformed': 0,
            'unexpected': 0,
            'window_stalls': 0
        }

    @property
    def name(self) -> str:
        return f"worker ({self.job_id},{self.part_id})"

    def start(self):
        """Install the receive handler and schedule the first send."""
        if self.state == WorkerState.STOPPED:
            logger.warning(f"{self.name} cannot restart a stopped session")
            return

        self.socket.set_recv_callback(self.handle_read)
        logger.info(
            f"{self._now()} {self.name} started "
            f"(relay {format_address(self.relay_address)}, rounds {self.max_rounds or 'unlimited'}, "
            f"relay_window {self.relay_window}, ack_window {self.ack_window})"
        )

        if self.has_more_rounds():
            self._schedule_send(0.0)

    def stop(self):
        """Cancel any pending send and ignore all further events."""
        if self.state == WorkerState.STOPPED:
            return

        self._cancel_pending_send()
        self.state = WorkerState.STOPPED
        self.socket.set_recv_callback(None)
        logger.info(
            f"{self._now()} {self.name} stopped "
            f"(sent {self.stats['contributions_sent']}, last ack {self.last_ack})"
        )

    def has_more_rounds(self) -> bool:
        """Whether round `sent` is within max_rounds (0 = unlimited)."""
        return self.max_rounds == 0 or self.sent < self.max_rounds

    def boundary(self) -> int:
        """Highest round id the windows currently allow to be sent."""
        return min(
            self.last_ack + self.relay_window,
            self.last_completion + self.ack_window
        )

    def is_finished(self) -> bool:
        """True once every round has been sent and the last one acknowledged."""
        return self._finished_reported

    def send(self):
        """Emit the contribution for round `sent` and advance the counter."""
        self._send_event = None
        if self.state == WorkerState.STOPPED:
            return

        message = Contribution(self.job_id, self.part_id, self.sent)
        payload = message.encode()
        self.socket.send_to(payload, self.relay_address)

        self.sent += 1
        self.stats['contributions_sent'] += 1
        self.state = WorkerState.AWAITING_ACK

        logger.info(
            f"{self._now()} {self.name} sent {len(payload)} bytes "
            f"round {message.round_id} ( {format_address(self.relay_address)} )"
        )

    def handle_read(self, socket: DatagramSocket):
        """Drain every queued datagram."""
        while True:
            item = socket.recv_from()
            if item is None:
                break
            payload, sender = item
            self.on_message(payload, sender)

    def on_message(self, payload: bytes, sender: Address):
        """
        Dispatch one inbound datagram.

        Malformed and unexpected payloads are logged and dropped without
        touching the window state.
        """
        if self.state == WorkerState.STOPPED:
            return

        try:
            message = decode(payload)
        except MalformedMessage as e:
            self.stats['malformed'] += 1
            logger.warning(f"{self._now()} {self.name} dropped malformed message: {e.reason}")
            return

        logger.debug(f"{self._now()} {self.name} received : {payload!r}")

        if isinstance(message, RoundAck):
            self.on_round_ack(message.round_id)
        elif isinstance(message, CompletionAck):
            self.on_completion_ack(message.part_id, message.round_id)
        elif isinstance(message, (Contribution, CombinedResult)):
            self.stats['unexpected'] += 1
            logger.warning(
                f"{self._now()} {self.name} ignored unexpected {type(message).__name__} "
                f"from {format_address(sender)}"
            )

    def on_round_ack(self, round_id: int):
        """
        Advance the relay window.

        The ack is authoritative: `sent` collapses to round_id + 1 even if
        that moves it backwards.
        """
        if self.state == WorkerState.STOPPED:
            return

        self.stats['round_acks'] += 1
        self.last_ack = round_id
        self.sent = round_id + 1

        boundary = self.boundary()
        if self.has_more_rounds() and self.sent <= boundary:
            self._schedule_send(self.config.pacing_interval)
            return

        self._cancel_pending_send()
        self.state = WorkerState.IDLE

        if self.has_more_rounds():
            self.stats['window_stalls'] += 1
            logger.info(
                f"{self._now()} {self.name} window closed at round {self.sent} "
                f"(boundary {boundary})"
            )
        else:
            self._report_finished()

    def on_completion_ack(self, part_id: int, round_id: int):
        """
        Handle a coordinator completion broadcast.

        Under the "observed" policy last_completion never moves, leaving the
        relay window as the only effective bound below the initial
        ack_window. Under "tracking" the watermark advances and an idle
        session resumes if the wider boundary admits its next round.

        The parameter server fills the first field with the job id of the
        combined result, so under "tracking" acks for other jobs are
        ignored.
        """
        if self.state == WorkerState.STOPPED:
            return

        self.stats['completion_acks'] += 1

        if not self.track_completions:
            logger.debug(
                f"{self._now()} {self.name} completion ack ({part_id},{round_id}) not tracked"
            )
            return

        if part_id != self.job_id:
            logger.debug(
                f"{self._now()} {self.name} ignored completion ack for job {part_id}"
            )
            return

        if round_id <= self.last_completion:
            return

        self.last_completion = round_id
        logger.debug(f"{self._now()} {self.name} last completion -> {round_id}")

        if (
            self.state == WorkerState.IDLE
            and self.has_more_rounds()
            and self.sent <= self.boundary()
        ):
            logger.info(f"{self._now()} {self.name} window reopened at round {self.sent}")
            self._schedule_send(self.config.pacing_interval)

    def get_status(self) -> Dict[str, Any]:
        """
        Get session status.

        Returns:
            Status dictionary with window state and statistics
        """
        return {
            'job_id': self.job_id,
            'part_id': self.part_id,
            'state': self.state.value,
            'sent': self.sent,
            'last_ack': self.last_ack,
            'last_completion': self.last_completion,
            'boundary': self.boundary(),
            'finished': self.is_finished(),
            **self.stats
        }

    def _schedule_send(self, delay: float):
        # At most one send is ever outstanding
        self._cancel_pending_send()
        self._send_event = self.scheduler.schedule(delay, self.send)
        self.state = WorkerState.SENDING

    def _cancel_pending_send(self):
        if self._send_event is not None:
            self._send_event.cancel()
            self._send_event = None

    def _report_finished(self):
        if self._finished_reported:
            return
        self._finished_reported = True
        logger.info(f"{self._now()} {self.name} finished all {self.max_rounds} rounds")
        if self.on_finished is not None:
            self.on_finished(self)

    def _now(self) -> str:
        return f"{self.scheduler.now():.3f}s"
