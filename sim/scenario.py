"""
Dumbbell aggregation experiment.

Topology (one-way link delays):

    worker 0 --6ms--+
    worker 1 --8ms--+-- relay --2ms-- parameter server
    worker 2 --8ms--+

Workers of one job each own one part and send to the relay. The relay
acknowledges every contribution, merges each round and forwards one
combined result to the parameter server, whose completion-ack broadcast
is forwarded back to the workers by the relay.
"""

import argparse
import logging
from typing import Any, Dict, List, Optional

from communication.transport import BROADCAST_HOST
from coordinator.config import CoordinatorConfig
from coordinator.parameter_server import ParameterServer
from relay.config import RelayConfig
from relay.switch import AggregatingRelay
from sim.clock import VirtualScheduler
from sim.network import SimNetwork
from worker.config import WorkerConfig
from worker.session import WorkerSession


logger = logging.getLogger(__name__)


PORT = 9
RELAY_HOST = "10.1.1.2"
SERVER_HOST = "10.3.1.1"

WORKER_SEGMENT = "workers"
SERVER_SEGMENT = "servers"


class DumbbellScenario:
    """Wires every role of the experiment onto one virtual network."""

    def __init__(
        self,
        num_workers: int = 3,
        job_id: int = 1,
        max_rounds: int = 2,
        intervals: Optional[List[float]] = None,
        max_parts: Optional[int] = None,
        ack_window: int = 15,
        relay_window: int = 5,
        completion_policy: str = "observed",
        buffer_capacity: int = 10,
        overflow_policy: str = "abort_batch",
        loss_rate: float = 0.0,
        seed: Optional[int] = None,
        worker_start: float = 1.0,
        stop_time: float = 10.0
    ):
        """
        Args:
            num_workers: Workers in the job (one part each)
            job_id: Job identifier shared by all workers
            max_rounds: Rounds each worker sends
            intervals: Per-worker pacing intervals (defaults to 1.0, 1.5, 1.5, ...)
            max_parts: Parts completing a round (defaults to num_workers)
            ack_window: Worker window from last completion
            relay_window: Worker window from last relay ack
            completion_policy: "observed" or "tracking"
            buffer_capacity: Relay open-round capacity
            overflow_policy: "abort_batch" or "drop_one"
            loss_rate: Probability of losing any datagram delivery
            seed: Random seed for losses
            worker_start: Virtual time the workers start
            stop_time: Virtual time every role stops
        """
        if num_workers < 1:
            raise ValueError("num_workers must be >= 1")

        if intervals is None:
            intervals = [1.0] + [1.5] * (num_workers - 1)
        if len(intervals) != num_workers:
            raise ValueError("Need one pacing interval per worker")

        self.stop_time = stop_time
        self.scheduler = VirtualScheduler()
        self.network = SimNetwork(self.scheduler, loss_rate=loss_rate, seed=seed)

        # Relay bridges both segments so its forwards reach workers and server
        relay_socket = self.network.bind(
            (RELAY_HOST, PORT), segments=(WORKER_SEGMENT, SERVER_SEGMENT)
        )
        self.relay = AggregatingRelay(
            RelayConfig(
                max_parts=max_parts or num_workers,
                buffer_capacity=buffer_capacity,
                overflow_policy=overflow_policy,
                listen_port=PORT,
                coordinator_address=(SERVER_HOST, PORT),
                broadcast_addresses=[(BROADCAST_HOST, PORT)]
            ),
            self.scheduler,
            relay_socket
        )

        server_socket = self.network.bind((SERVER_HOST, PORT), segments=(SERVER_SEGMENT,))
        self.server = ParameterServer(
            CoordinatorConfig(listen_port=PORT, broadcast_addresses=[(BROADCAST_HOST, PORT)]),
            self.scheduler,
            server_socket
        )
        self.network.set_delay(RELAY_HOST, SERVER_HOST, 0.002)

        self.workers: List[WorkerSession] = []
        for i in range(num_workers):
            host = f"10.2.{i + 1}.1"
            socket = self.network.bind((host, PORT), segments=(WORKER_SEGMENT,))
            # First worker sits on the fast access link
            self.network.set_delay(host, RELAY_HOST, 0.006 if i == 0 else 0.008)
            config = WorkerConfig(
                job_id=job_id,
                part_id=i,
                max_rounds=max_rounds,
                pacing_interval=intervals[i],
                ack_window=ack_window,
                relay_window=relay_window,
                completion_policy=completion_policy,
                listen_port=PORT,
                relay_address=(RELAY_HOST, PORT)
            )
            self.workers.append(WorkerSession(config, self.scheduler, socket))

        self.scheduler.schedule_at(0.0, self.relay.start)
        self.scheduler.schedule_at(0.0, self.server.start)
        for worker in self.workers:
            self.scheduler.schedule_at(worker_start, worker.start)

        self.scheduler.schedule_at(stop_time, self._stop_all)

    def run(self, until: Optional[float] = None) -> Dict[str, Any]:
        """
        Run the experiment.

        Args:
            until: Virtual time to run to (defaults to the stop time)

        Returns:
            Summary dictionary
        """
        self.scheduler.run(until=self.stop_time if until is None else until)
        return self.summary()

    def summary(self) -> Dict[str, Any]:
        return {
            'time': self.scheduler.now(),
            'workers': [w.get_status() for w in self.workers],
            'relay': self.relay.get_status(),
            'server': self.server.get_status(),
            'network': dict(self.network.stats)
        }

    def _stop_all(self):
        for worker in self.workers:
            worker.stop()
        self.relay.stop()
        self.server.stop()


def print_summary(summary: Dict[str, Any]):
    print(f"\n{'='*60}")
    print(f"Simulation finished at {summary['time']:.3f}s")
    print(f"{'='*60}")
    for w in summary['workers']:
        print(
            f"Worker ({w['job_id']},{w['part_id']}): sent {w['contributions_sent']}, "
            f"round acks {w['round_acks']}, completion acks {w['completion_acks']}, "
            f"last ack {w['last_ack']}, state {w['state']}"
        )
    relay = summary['relay']
    print(
        f"Relay: results {relay['results_sent']}, duplicates {relay['duplicates']}, "
        f"overflows {relay['overflows']}, open rounds {len(relay['open_rounds'])}"
    )
    print(f"Parameter server: results received {summary['server']['results_received']}")
    net = summary['network']
    print(f"Network: delivered {net['delivered']}, lost {net['lost']}")
    print(f"{'='*60}\n")


def main(argv=None):
    parser = argparse.ArgumentParser(description="AggNet dumbbell aggregation simulation")

    parser.add_argument('--workers', type=int, default=3, help='Number of workers')
    parser.add_argument('--rounds', type=int, default=2, help='Rounds per worker (0 = unlimited)')
    parser.add_argument('--max-parts', type=int, default=None, help='Parts per round (default: workers)')
    parser.add_argument('--relay-window', type=int, default=5, help='Window from last relay ack')
    parser.add_argument('--ack-window', type=int, default=15, help='Window from last completion')
    parser.add_argument(
        '--completion-policy',
        type=str,
        default='observed',
        choices=['observed', 'tracking'],
        help='Whether completion acks advance the ack window'
    )
    parser.add_argument('--capacity', type=int, default=10, help='Relay buffer capacity')
    parser.add_argument(
        '--overflow-policy',
        type=str,
        default='abort_batch',
        choices=['abort_batch', 'drop_one'],
        help='Relay behavior on buffer overflow'
    )
    parser.add_argument('--loss', type=float, default=0.0, help='Datagram loss probability')
    parser.add_argument('--seed', type=int, default=None, help='Random seed for losses')
    parser.add_argument('--duration', type=float, default=10.0, help='Virtual seconds to run')
    parser.add_argument('--log-level', type=str, default='INFO', help='Logging level')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level,
        format='%(name)s - %(levelname)s - %(message)s'
    )

    scenario = DumbbellScenario(
        num_workers=args.workers,
        max_rounds=args.rounds,
        max_parts=args.max_parts,
        ack_window=args.ack_window,
        relay_window=args.relay_window,
        completion_policy=args.completion_policy,
        buffer_capacity=args.capacity,
        overflow_policy=args.overflow_policy,
        loss_rate=args.loss,
        seed=args.seed,
        stop_time=args.duration
    )
    summary = scenario.run()
    print_summary(summary)
    return summary


if __name__ == "__main__":
    main()
