"""
Relay service for AggNet.

Runs an AggregatingRelay on a UDP endpoint until signalled.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from communication.udp import UDPEndpoint
from core.errors import BindFailure
from core.log import configure_logging
from core.scheduler import AsyncioScheduler
from relay.config import RelayConfig
from relay.switch import AggregatingRelay


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class RelayService:
    """Owns the relay's socket and lifecycle."""

    def __init__(self, config: RelayConfig):
        self.config = config
        self._log_handler = configure_logging(config.log_level, config.log_file)

        self.endpoint: Optional[UDPEndpoint] = None
        self.relay: Optional[AggregatingRelay] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """
        Bind the socket and start the relay.

        Raises:
            BindFailure: If the listening socket cannot be bound
        """
        self.endpoint = await UDPEndpoint.open(self.config.listen_host, self.config.listen_port)
        self.relay = AggregatingRelay(self.config, AsyncioScheduler(), self.endpoint)
        self.relay.start()

    async def stop(self):
        """Stop the relay and close the socket."""
        if self.relay:
            self.relay.stop()
        if self.endpoint:
            self.endpoint.close()
            self.endpoint = None
        self._shutdown_event.set()

        if self._log_handler:
            logging.getLogger().removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    async def wait_for_shutdown(self):
        await self._shutdown_event.wait()


async def main(config: Optional[RelayConfig] = None) -> int:
    """
    Main entry point for the relay service.

    Args:
        config: Relay configuration (defaults if None)

    Returns:
        Process exit code
    """
    if config is None:
        config = RelayConfig()

    service = RelayService(config)
    try:
        await service.start()
    except BindFailure as e:
        logger.error(str(e))
        await service.stop()
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: loop.create_task(service.stop()))

    try:
        await service.wait_for_shutdown()
        if service.relay:
            logger.info(f"Final status: {service.relay.get_status()}")
    finally:
        await service.stop()

    return 0


def parse_args(argv=None) -> RelayConfig:
    parser = argparse.ArgumentParser(description="AggNet Aggregating Relay")
    parser.add_argument('--config', type=str, help='Path to JSON config file')
    parser.add_argument('--max-parts', type=int, help='Parts that complete a round')
    parser.add_argument('--capacity', type=int, help='Maximum open rounds')
    parser.add_argument(
        '--overflow-policy',
        type=str,
        choices=['abort_batch', 'drop_one'],
        help='Behavior when the buffer is full'
    )
    parser.add_argument(
        '--forward-ends-batch',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Whether forwarding a completion ack ends the current read batch'
    )
    parser.add_argument('--listen-port', type=int, help='Local UDP port')
    parser.add_argument('--coordinator', type=str, help='Coordinator address as host:port')
    parser.add_argument(
        '--broadcast',
        action='append',
        help='host:port to forward completion acks to (repeatable)'
    )
    parser.add_argument('--log-level', type=str, help='Logging level')
    parser.add_argument('--log-file', type=str, help='Also write logs to this file')
    args = parser.parse_args(argv)

    config_dict = RelayConfig.from_json_file(args.config).to_dict() if args.config else {}
    overrides = {
        'max_parts': args.max_parts,
        'buffer_capacity': args.capacity,
        'overflow_policy': args.overflow_policy,
        'forward_ends_batch': args.forward_ends_batch,
        'listen_port': args.listen_port,
        'coordinator_address': args.coordinator,
        'broadcast_addresses': args.broadcast,
        'log_level': args.log_level,
        'log_file': args.log_file,
    }
    config_dict.update({k: v for k, v in overrides.items() if v is not None})
    return RelayConfig.from_dict(config_dict)


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))
