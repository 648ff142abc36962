"""
Unit tests for the aggregating relay.

Tests:
- Acknowledgment of every contribution
- Round merging and result forwarding
- Duplicate and overflow handling under both overflow policies
- Completion-ack forwarding and batch termination
"""

import pytest

from relay.config import RelayConfig
from relay.switch import AggregatingRelay


COORDINATOR = ("10.3.1.1", 9)
WORKERS = ("255.255.255.255", 9)

W0 = ("10.2.1.1", 9)
W1 = ("10.2.2.1", 9)
W2 = ("10.2.3.1", 9)


def make_relay(scheduler, socket, **overrides):
    settings = dict(
        max_parts=3,
        buffer_capacity=10,
        coordinator_address=COORDINATOR,
        broadcast_addresses=[WORKERS]
    )
    settings.update(overrides)
    relay = AggregatingRelay(RelayConfig(**settings), scheduler, socket)
    relay.start()
    return relay


class TestContributions:
    """Test contribution handling."""

    def test_every_contribution_is_acknowledged(self, scheduler, socket):
        make_relay(scheduler, socket)

        socket.deliver(b"1,0,4", W0)

        assert socket.sent == [(b"GACK,4", W0)]

    def test_out_of_order_parts_yield_one_result(self, scheduler, socket):
        relay = make_relay(scheduler, socket)

        socket.deliver(b"1,2,7", W2)
        socket.deliver(b"1,0,7", W0)
        assert socket.payloads_to(COORDINATOR) == []

        socket.deliver(b"1,1,7", W1)

        assert socket.payloads_to(COORDINATOR) == [b"RESULT,1,7"]
        assert socket.payloads_to(W0) == [b"GACK,7"]
        assert socket.payloads_to(W1) == [b"GACK,7"]
        assert socket.payloads_to(W2) == [b"GACK,7"]
        assert relay.buffer.open_rounds() == []

    def test_ack_precedes_result(self, scheduler, socket):
        make_relay(scheduler, socket, max_parts=1)

        socket.deliver(b"1,0,0", W0)

        assert socket.sent == [(b"GACK,0", W0), (b"RESULT,1,0", COORDINATOR)]

    def test_duplicate_is_acked_but_not_counted(self, scheduler, socket):
        relay = make_relay(scheduler, socket, max_parts=2)

        socket.deliver(b"1,0,3", W0)
        socket.deliver(b"1,0,3", W0)

        assert socket.payloads_to(W0) == [b"GACK,3", b"GACK,3"]
        assert socket.payloads_to(COORDINATOR) == []
        assert relay.buffer.parts(1, 3) == frozenset({0})
        assert relay.stats['duplicates'] == 1

        socket.deliver(b"1,1,3", W1)
        assert socket.payloads_to(COORDINATOR) == [b"RESULT,1,3"]

    def test_batch_drains_all_contributions(self, scheduler, socket):
        relay = make_relay(scheduler, socket, max_parts=3)

        socket.queue(b"1,0,0", W0)
        socket.queue(b"1,1,0", W1)
        socket.queue(b"1,2,0", W2)

        assert relay.handle_read(socket) == 3
        assert socket.payloads_to(COORDINATOR) == [b"RESULT,1,0"]


class TestOverflow:
    """Test buffer overflow under both policies."""

    def fill(self, socket, count):
        for round_id in range(count):
            socket.deliver(f"1,0,{round_id}".encode(), W0)

    def test_overflow_still_acknowledges(self, scheduler, socket):
        relay = make_relay(scheduler, socket, buffer_capacity=2)
        self.fill(socket, 2)

        socket.deliver(b"1,0,2", W0)

        assert socket.payloads_to(W0)[-1] == b"GACK,2"
        assert not relay.buffer.is_open(1, 2)
        assert relay.stats['overflows'] == 1

    def test_abort_batch_leaves_rest_queued(self, scheduler, socket):
        relay = make_relay(scheduler, socket, buffer_capacity=2, overflow_policy="abort_batch")
        self.fill(socket, 2)
        socket.sent.clear()

        socket.queue(b"1,0,5", W0)
        socket.queue(b"1,1,0", W1)

        assert relay.handle_read(socket) == 1
        assert socket.sent == [(b"GACK,5", W0)]
        assert len(socket.inbox) == 1
        assert relay.stats['batches_cut_short'] == 1

        # The leftover is handled by the next read
        assert relay.handle_read(socket) == 1
        assert socket.payloads_to(W1) == [b"GACK,0"]
        assert relay.buffer.parts(1, 0) == frozenset({0, 1})

    def test_drop_one_continues_batch(self, scheduler, socket):
        relay = make_relay(scheduler, socket, buffer_capacity=2, overflow_policy="drop_one")
        self.fill(socket, 2)

        socket.queue(b"1,0,5", W0)
        socket.queue(b"1,1,0", W1)

        assert relay.handle_read(socket) == 2
        assert len(socket.inbox) == 0
        assert relay.buffer.parts(1, 0) == frozenset({0, 1})
        assert relay.stats['batches_cut_short'] == 0

    def test_contribution_to_open_round_when_full(self, scheduler, socket):
        relay = make_relay(scheduler, socket, max_parts=2, buffer_capacity=2)
        self.fill(socket, 2)

        socket.deliver(b"1,1,1", W1)

        assert socket.payloads_to(COORDINATOR) == [b"RESULT,1,1"]
        assert relay.buffer.open_rounds() == [(1, 0)]
        assert relay.stats['overflows'] == 0


class TestCompletionAckForwarding:
    """Test forwarding of coordinator completion acks."""

    def test_forwarded_verbatim(self, scheduler, socket):
        relay = make_relay(scheduler, socket)

        socket.deliver(b"AACK,1,7\x00", COORDINATOR)

        assert socket.sent == [(b"AACK,1,7\x00", WORKERS)]
        assert relay.stats['completion_acks_forwarded'] == 1

    def test_forwarded_to_every_address(self, scheduler, socket):
        make_relay(scheduler, socket, broadcast_addresses=[W0, W1])

        socket.deliver(b"AACK,1,7", COORDINATOR)

        assert socket.sent == [(b"AACK,1,7", W0), (b"AACK,1,7", W1)]

    def test_forward_ends_batch(self, scheduler, socket):
        relay = make_relay(scheduler, socket)

        socket.queue(b"AACK,1,7", COORDINATOR)
        socket.queue(b"1,0,8", W0)

        assert relay.handle_read(socket) == 1
        assert len(socket.inbox) == 1
        assert socket.payloads_to(W0) == []

    def test_forward_can_continue_batch(self, scheduler, socket):
        relay = make_relay(scheduler, socket, forward_ends_batch=False)

        socket.queue(b"AACK,1,7", COORDINATOR)
        socket.queue(b"1,0,8", W0)

        assert relay.handle_read(socket) == 2
        assert socket.payloads_to(W0) == [b"GACK,8"]


class TestOtherInput:
    """Test malformed and unexpected input."""

    @pytest.mark.parametrize("payload", [b"", b"1,2", b"x,y,z", b"AACK,1"])
    def test_malformed_is_skipped(self, scheduler, socket, payload):
        relay = make_relay(scheduler, socket)

        socket.queue(payload, W0)
        socket.queue(b"1,0,1", W0)

        assert relay.handle_read(socket) == 2
        assert socket.sent == [(b"GACK,1", W0)]
        assert relay.stats['malformed'] == 1

    def test_short_completion_ack_is_not_forwarded(self, scheduler, socket):
        relay = make_relay(scheduler, socket)

        socket.queue(b"AACK,1", COORDINATOR)
        socket.queue(b"1,0,1", W0)

        assert relay.handle_read(socket) == 2
        assert socket.sent == [(b"GACK,1", W0)]
        assert relay.stats['malformed'] == 1
        assert relay.stats['completion_acks_forwarded'] == 0

    @pytest.mark.parametrize("payload", [b"GACK,1", b"RESULT,1,1"])
    def test_own_message_types_are_ignored(self, scheduler, socket, payload):
        relay = make_relay(scheduler, socket)

        socket.deliver(payload, W0)

        assert socket.sent == []
        assert relay.stats['unexpected'] == 1

    def test_stopped_relay_does_nothing(self, scheduler, socket):
        relay = make_relay(scheduler, socket)
        relay.stop()

        socket.queue(b"1,0,0", W0)
        assert relay.handle_read(socket) == 0
        assert socket.sent == []
        assert socket.callback is None
        assert not relay.is_running()

    def test_get_status(self, scheduler, socket):
        relay = make_relay(scheduler, socket)
        socket.deliver(b"1,0,2", W0)

        status = relay.get_status()

        assert status['running'] is True
        assert status['open_rounds'] == [[1, 2]]
        assert status['round_acks_sent'] == 1
        assert status['results_sent'] == 0
