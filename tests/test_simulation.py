"""
End-to-end tests on the simulated dumbbell network.

Tests:
- Virtual scheduler ordering and cancellation
- Broadcast and unicast delivery on the simulated network
- The default three-worker experiment
- Long runs under both completion policies
- Lossy runs
"""

import pytest

from communication.transport import BROADCAST_HOST
from core.errors import BindFailure
from sim.clock import VirtualScheduler
from sim.network import SimNetwork
from sim.scenario import DumbbellScenario, main


class TestVirtualScheduler:
    """Test the discrete-event scheduler."""

    def test_events_run_in_time_then_insertion_order(self):
        scheduler = VirtualScheduler()
        fired = []

        scheduler.schedule(2.0, fired.append, "late")
        scheduler.schedule(1.0, fired.append, "first")
        scheduler.schedule(1.0, fired.append, "second")
        scheduler.run()

        assert fired == ["first", "second", "late"]
        assert scheduler.now() == 2.0

    def test_cancelled_event_is_skipped(self):
        scheduler = VirtualScheduler()
        fired = []

        event = scheduler.schedule(1.0, fired.append, "x")
        event.cancel()
        scheduler.run()

        assert fired == []
        assert scheduler.pending() == 0

    def test_run_until_advances_clock(self):
        scheduler = VirtualScheduler()
        fired = []
        scheduler.schedule(5.0, fired.append, "later")

        assert scheduler.run(until=3.0) == 3.0
        assert fired == []
        assert scheduler.pending() == 1


class TestSimNetwork:
    """Test datagram delivery on the simulated network."""

    def test_unicast_with_link_delay(self):
        scheduler = VirtualScheduler()
        network = SimNetwork(scheduler)
        a = network.bind(("10.0.0.1", 9))
        b = network.bind(("10.0.0.2", 9))
        network.set_delay("10.0.0.1", "10.0.0.2", 0.005)
        arrivals = []
        b.set_recv_callback(lambda sock: arrivals.append((scheduler.now(), sock.recv_from())))

        a.send_to(b"1,0,0", ("10.0.0.2", 9))
        scheduler.run()

        assert arrivals == [(0.005, (b"1,0,0", ("10.0.0.1", 9)))]

    def test_broadcast_stays_on_shared_segments(self):
        scheduler = VirtualScheduler()
        network = SimNetwork(scheduler)
        sender = network.bind(("10.0.0.1", 9), segments=("left",))
        peer = network.bind(("10.0.0.2", 9), segments=("left", "right"))
        other_port = network.bind(("10.0.0.3", 10), segments=("left",))
        isolated = network.bind(("10.0.0.4", 9), segments=("right",))

        sender.send_to(b"AACK,1,0", (BROADCAST_HOST, 9))
        scheduler.run()

        assert peer.pending() == 1
        assert sender.pending() == 0
        assert other_port.pending() == 0
        assert isolated.pending() == 0

    def test_unroutable_is_counted(self):
        scheduler = VirtualScheduler()
        network = SimNetwork(scheduler)
        sock = network.bind(("10.0.0.1", 9))

        sock.send_to(b"x", ("10.9.9.9", 9))
        scheduler.run()

        assert network.stats['unroutable'] == 1
        assert network.stats['delivered'] == 0

    def test_double_bind_fails(self):
        network = SimNetwork(VirtualScheduler())
        network.bind(("10.0.0.1", 9))

        with pytest.raises(BindFailure):
            network.bind(("10.0.0.1", 9))

    def test_invalid_loss_rate(self):
        with pytest.raises(ValueError):
            SimNetwork(VirtualScheduler(), loss_rate=1.0)


class TestDumbbellScenario:
    """Test the full experiment."""

    def test_default_run(self):
        scenario = DumbbellScenario()
        summary = scenario.run()

        assert summary['server']['results_received'] == 2
        assert summary['relay']['results_sent'] == 2
        assert summary['relay']['open_rounds'] == []
        assert summary['relay']['duplicates'] == 0
        assert summary['relay']['overflows'] == 0

        for worker in summary['workers']:
            assert worker['contributions_sent'] == 2
            assert worker['round_acks'] == 2
            assert worker['completion_acks'] == 2
            assert worker['finished'] is True

    def test_completion_ack_echo_reaches_server(self):
        """The relay's forward also reaches the server, which ignores it."""
        scenario = DumbbellScenario()
        summary = scenario.run()

        assert summary['server']['echoes_ignored'] == 2
        assert summary['server']['completion_acks_sent'] == 2

    def test_roles_stop_at_stop_time(self):
        scenario = DumbbellScenario(stop_time=5.0)
        scenario.run()

        assert not scenario.relay.is_running()
        assert not scenario.server.is_running()
        assert all(w.get_status()['state'] == 'stopped' for w in scenario.workers)

    def test_observed_policy_stalls_past_ack_window(self):
        scenario = DumbbellScenario(max_rounds=20, completion_policy="observed", stop_time=60.0)
        summary = scenario.run(until=59.0)

        for worker in summary['workers']:
            assert worker['contributions_sent'] == 16
            assert worker['state'] == 'idle'
            assert worker['finished'] is False
            assert worker['window_stalls'] == 1
            assert worker['last_completion'] == 0
        assert summary['server']['results_received'] == 16

    def test_tracking_policy_finishes_all_rounds(self):
        scenario = DumbbellScenario(max_rounds=20, completion_policy="tracking", stop_time=60.0)
        summary = scenario.run(until=59.0)

        for worker in summary['workers']:
            assert worker['contributions_sent'] == 20
            assert worker['finished'] is True
            assert worker['last_completion'] == 19
        assert summary['server']['results_received'] == 20
        assert summary['relay']['open_rounds'] == []

    def test_single_worker(self):
        scenario = DumbbellScenario(num_workers=1, max_rounds=3)
        summary = scenario.run()

        assert summary['server']['results_received'] == 3
        assert summary['workers'][0]['finished'] is True

    def test_lossy_run_keeps_bounds(self):
        scenario = DumbbellScenario(max_rounds=10, loss_rate=0.2, seed=7, stop_time=40.0)
        summary = scenario.run()

        relay = summary['relay']
        assert len(relay['open_rounds']) <= 10
        assert summary['server']['results_received'] <= relay['results_sent'] <= 10
        for worker in summary['workers']:
            # No retransmission, so never more sends than rounds
            assert worker['contributions_sent'] <= 10

    def test_lossy_runs_are_reproducible(self):
        first = DumbbellScenario(max_rounds=10, loss_rate=0.3, seed=11).run()
        second = DumbbellScenario(max_rounds=10, loss_rate=0.3, seed=11).run()

        assert first == second

    def test_mismatched_intervals(self):
        with pytest.raises(ValueError):
            DumbbellScenario(num_workers=3, intervals=[1.0])

    def test_main(self, capsys):
        summary = main(["--rounds", "2", "--log-level", "WARNING"])

        assert summary['server']['results_received'] == 2
        assert "Parameter server: results received 2" in capsys.readouterr().out
