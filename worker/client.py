"""
Main worker client for AggNet.

Binds a UDP endpoint, runs a WorkerSession on the asyncio loop and manages
the process lifecycle.
"""

import argparse
import asyncio
import signal
import logging
import sys
from typing import Optional

from communication.udp import UDPEndpoint
from core.errors import BindFailure
from core.log import configure_logging
from core.scheduler import AsyncioScheduler
from worker.config import WorkerConfig
from worker.session import WorkerSession


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class WorkerClient:
    """
    Worker process wrapper.

    Owns the socket and the session; stops when every round is acknowledged,
    when run_seconds elapses, or on a signal.
    """

    def __init__(self, config: WorkerConfig):
        """
        Initialize worker client.

        Args:
            config: Worker configuration
        """
        self.config = config

        # Set logging level and optional log file
        self._log_handler = configure_logging(config.log_level, config.log_file)

        # Components (initialized in start())
        self.endpoint: Optional[UDPEndpoint] = None
        self.session: Optional[WorkerSession] = None

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()

        logger.info(f"Worker client initialized: {config}")

    async def start(self):
        """
        Start worker client.

        Raises:
            BindFailure: If the listening socket cannot be bound
        """
        if self._running:
            logger.warning("Worker already running")
            return

        logger.info("=" * 60)
        logger.info("Starting AggNet Worker")
        logger.info("=" * 60)
        logger.info(f"Job/Part: {self.config.job_id}/{self.config.part_id}")
        logger.info(f"Relay: {self.config.relay_address[0]}:{self.config.relay_address[1]}")
        logger.info(f"Rounds: {self.config.max_rounds or 'unlimited'}")
        logger.info(f"Completion policy: {self.config.completion_policy}")
        logger.info("=" * 60)

        self.endpoint = await UDPEndpoint.open(self.config.listen_host, self.config.listen_port)
        self.session = WorkerSession(
            config=self.config,
            scheduler=AsyncioScheduler(),
            socket=self.endpoint,
            on_finished=lambda _session: self._shutdown_event.set()
        )

        self._running = True
        self.session.start()

    async def stop(self):
        """Stop the session and release the socket."""
        if not self._running:
            return

        logger.info("Stopping worker...")
        self._running = False

        if self.session:
            self.session.stop()
        if self.endpoint:
            self.endpoint.close()

        self._shutdown_event.set()
        logger.info("Worker stopped")
        self.close_log_file()

    def close_log_file(self):
        """Detach and close the log file handler, if any."""
        if self._log_handler:
            logging.getLogger().removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    async def wait_for_shutdown(self, timeout: Optional[float] = None):
        """
        Wait until the session finishes, stop() is called or timeout passes.

        Args:
            timeout: Maximum seconds to wait (None waits forever)
        """
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info(f"Run time of {timeout}s elapsed")

    def get_status(self) -> dict:
        """
        Get worker status.

        Returns:
            Status dictionary
        """
        status = {'running': self._running}
        if self.session:
            status['session'] = self.session.get_status()
        return status

    def is_running(self) -> bool:
        """
        Check if worker is running.

        Returns:
            True if running, False otherwise
        """
        return self._running


def setup_signal_handlers(worker: WorkerClient):
    """
    Set up signal handlers for graceful shutdown.

    Args:
        worker: Worker client instance
    """
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        loop.create_task(worker.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)


# Main entry point

async def main(config: Optional[WorkerConfig] = None) -> int:
    """
    Main entry point for worker client.

    Args:
        config: Optional worker configuration (creates default if None)

    Returns:
        Process exit code
    """
    if config is None:
        config = WorkerConfig()

    worker = WorkerClient(config)

    try:
        await worker.start()
    except BindFailure as e:
        logger.error(str(e))
        worker.close_log_file()
        return 1

    setup_signal_handlers(worker)

    try:
        await worker.wait_for_shutdown(timeout=config.run_seconds)
        logger.info(f"Final status: {worker.get_status()}")
    finally:
        await worker.stop()

    return 0


def parse_args(argv=None) -> WorkerConfig:
    parser = argparse.ArgumentParser(description="AggNet Worker")
    parser.add_argument('--config', type=str, help='Path to JSON config file')
    parser.add_argument('--job-id', type=int, help='Job identifier')
    parser.add_argument('--part-id', type=int, help='Part identifier')
    parser.add_argument('--max-rounds', type=int, help='Rounds to send (0 = unlimited)')
    parser.add_argument('--interval', type=float, help='Pacing interval in seconds')
    parser.add_argument('--ack-window', type=int, help='Window from last completion')
    parser.add_argument('--relay-window', type=int, help='Window from last relay ack')
    parser.add_argument(
        '--completion-policy',
        type=str,
        choices=['observed', 'tracking'],
        help='Whether completion acks advance the ack window'
    )
    parser.add_argument('--listen-port', type=int, help='Local UDP port')
    parser.add_argument('--relay', type=str, help='Relay address as host:port')
    parser.add_argument('--run-seconds', type=float, help='Stop after this many seconds')
    parser.add_argument('--log-level', type=str, help='Logging level')
    parser.add_argument('--log-file', type=str, help='Also write logs to this file')
    args = parser.parse_args(argv)

    config_dict = WorkerConfig.from_json_file(args.config).to_dict() if args.config else {}
    overrides = {
        'job_id': args.job_id,
        'part_id': args.part_id,
        'max_rounds': args.max_rounds,
        'pacing_interval': args.interval,
        'ack_window': args.ack_window,
        'relay_window': args.relay_window,
        'completion_policy': args.completion_policy,
        'listen_port': args.listen_port,
        'relay_address': args.relay,
        'run_seconds': args.run_seconds,
        'log_level': args.log_level,
        'log_file': args.log_file,
    }
    config_dict.update({k: v for k, v in overrides.items() if v is not None})
    return WorkerConfig.from_dict(config_dict)


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))
