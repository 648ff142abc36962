"""
Integration tests running every role over real UDP on localhost.

Tests:
- UDP endpoint binding and queue draining
- Worker -> relay -> parameter server round trip
"""

import asyncio

import pytest

from communication.udp import UDPEndpoint
from coordinator.config import CoordinatorConfig
from coordinator.parameter_server import ParameterServer
from core.errors import BindFailure
from core.scheduler import AsyncioScheduler
from relay.config import RelayConfig
from relay.service import RelayService
from worker.client import WorkerClient
from worker.config import WorkerConfig


HOST = "127.0.0.1"


async def wait_until(predicate, timeout=3.0):
    """Poll predicate until it holds or timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


class TestUDPEndpoint:
    """Test the asyncio datagram endpoint."""

    @pytest.mark.asyncio
    async def test_send_and_receive(self):
        a = await UDPEndpoint.open(HOST, 0)
        b = await UDPEndpoint.open(HOST, 0)
        received = []

        def on_read(sock):
            while True:
                item = sock.recv_from()
                if item is None:
                    break
                received.append(item)

        b.set_recv_callback(on_read)
        try:
            a.send_to(b"GACK,3", b.local_address)
            assert await wait_until(lambda: received)
            assert received[0] == (b"GACK,3", a.local_address)
        finally:
            a.close()
            b.close()

    @pytest.mark.asyncio
    async def test_leftovers_wait_for_next_arrival(self):
        a = await UDPEndpoint.open(HOST, 0)
        b = await UDPEndpoint.open(HOST, 0)
        reads = []
        try:
            a.send_to(b"1,0,0", b.local_address)
            a.send_to(b"1,0,1", b.local_address)
            assert await wait_until(lambda: b.pending() == 2)

            # Consume one datagram per callback
            b.set_recv_callback(lambda sock: reads.append(sock.recv_from()[0]))
            assert await wait_until(lambda: reads == [b"1,0,0"])
            assert b.pending() == 1

            a.send_to(b"1,0,2", b.local_address)
            assert await wait_until(lambda: len(reads) == 2)
            assert reads == [b"1,0,0", b"1,0,1"]
            assert b.pending() == 1
        finally:
            a.close()
            b.close()

    @pytest.mark.asyncio
    async def test_bind_failure(self):
        first = await UDPEndpoint.open(HOST, 0)
        try:
            with pytest.raises(BindFailure) as exc_info:
                await UDPEndpoint.open(HOST, first.local_address[1], allow_broadcast=False)
            assert exc_info.value.port == first.local_address[1]
        finally:
            first.close()


class TestRoundTrip:
    """Run worker, relay and parameter server against each other."""

    @pytest.mark.asyncio
    async def test_worker_relay_server(self):
        ps_endpoint = await UDPEndpoint.open(HOST, 0)
        ps = ParameterServer(
            CoordinatorConfig(listen_host=HOST, listen_port=ps_endpoint.local_address[1]),
            AsyncioScheduler(),
            ps_endpoint
        )

        relay_service = RelayService(RelayConfig(
            max_parts=1,
            listen_host=HOST,
            listen_port=0,
            coordinator_address=ps_endpoint.local_address
        ))
        await relay_service.start()
        relay_address = relay_service.endpoint.local_address

        worker = WorkerClient(WorkerConfig(
            job_id=1,
            part_id=0,
            max_rounds=3,
            pacing_interval=0.05,
            listen_host=HOST,
            listen_port=0,
            relay_address=relay_address
        ))

        # Wire the completion-ack path before any traffic flows
        ps.config.broadcast_addresses = [relay_address]
        ps.start()

        try:
            await worker.start()
            relay_service.config.broadcast_addresses = [worker.endpoint.local_address]

            await asyncio.wait_for(worker.wait_for_shutdown(), timeout=5.0)

            session = worker.session
            assert session.is_finished()
            assert session.stats['contributions_sent'] == 3

            assert await wait_until(lambda: session.stats['completion_acks'] == 3)
            assert ps.results_received == 3
            assert relay_service.relay.stats['results_sent'] == 3
            assert relay_service.relay.stats['completion_acks_forwarded'] == 3
        finally:
            await worker.stop()
            await relay_service.stop()
            ps.stop()
            ps_endpoint.close()
