"""
Coordinator server for AggNet.

Runs the parameter server on a UDP endpoint and exposes a REST API for:
- Liveness and health checks
- Result and completion-ack counters
- The active configuration
"""

import argparse
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
import uvicorn

from communication.transport import format_address
from communication.udp import UDPEndpoint
from coordinator.config import CoordinatorConfig
from coordinator.parameter_server import ParameterServer
from core.errors import BindFailure
from core.log import configure_logging
from core.scheduler import AsyncioScheduler


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Pydantic models for API

class ServerStats(BaseModel):
    """Parameter server counters."""
    running: bool = Field(..., description="Whether datagrams are being handled")
    results_received: int = Field(..., description="Combined results accepted", ge=0)
    completion_acks_sent: int = Field(..., description="Completion acks broadcast", ge=0)
    echoes_ignored: int = Field(..., description="Completion-ack echoes ignored", ge=0)
    malformed: int = Field(..., description="Malformed datagrams dropped", ge=0)
    unexpected: int = Field(..., description="Well-formed but unexpected datagrams dropped", ge=0)


class ServerConfigView(BaseModel):
    """Active coordinator configuration."""
    listen_host: str
    listen_port: int
    broadcast_addresses: List[str]
    api_host: str
    api_port: int


# Global state
config: CoordinatorConfig = CoordinatorConfig()
endpoint: Optional[UDPEndpoint] = None
parameter_server: Optional[ParameterServer] = None


# Lifespan context manager

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan (startup/shutdown)."""
    global endpoint, parameter_server

    # Startup
    logger.info("Starting coordinator server...")
    try:
        endpoint = await UDPEndpoint.open(config.listen_host, config.listen_port)
    except BindFailure as e:
        logger.error(str(e))
        raise

    parameter_server = ParameterServer(config, AsyncioScheduler(), endpoint)
    parameter_server.start()
    logger.info("Coordinator server started successfully")

    yield

    # Shutdown
    logger.info("Shutting down coordinator server...")
    parameter_server.stop()
    endpoint.close()
    logger.info("Coordinator server shutdown complete")


# Create FastAPI app

app = FastAPI(
    title="AggNet Coordinator",
    description="Parameter server for in-network gradient aggregation",
    version="0.1.0",
    lifespan=lifespan
)


def _require_server() -> ParameterServer:
    if parameter_server is None:
        raise HTTPException(status_code=503, detail="Parameter server not started")
    return parameter_server


# API Endpoints

@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "AggNet Coordinator",
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    server = _require_server()
    return {
        "status": "healthy" if server.is_running() else "stopped",
        "results_received": server.results_received
    }


@app.get("/stats", response_model=ServerStats)
async def stats():
    """Result and completion-ack counters."""
    return ServerStats(**_require_server().get_status())


@app.get("/config", response_model=ServerConfigView)
async def get_config():
    """Active configuration."""
    return ServerConfigView(
        listen_host=config.listen_host,
        listen_port=config.listen_port,
        broadcast_addresses=[format_address(a) for a in config.broadcast_addresses],
        api_host=config.api_host,
        api_port=config.api_port
    )


# Development server

def run_server(server_config: Optional[CoordinatorConfig] = None):
    """
    Run the coordinator server.

    Args:
        server_config: Coordinator configuration (defaults if None)
    """
    global config
    if server_config is not None:
        config = server_config

    configure_logging(config.log_level, config.log_file)
    uvicorn.run(app, host=config.api_host, port=config.api_port, log_level="info")


def main():
    parser = argparse.ArgumentParser(description="AggNet Coordinator (parameter server)")
    parser.add_argument('--config', type=str, help='Path to JSON config file')
    parser.add_argument('--listen-port', type=int, help='UDP port for combined results')
    parser.add_argument(
        '--broadcast',
        action='append',
        help='host:port to send completion acks to (repeatable)'
    )
    parser.add_argument('--api-port', type=int, help='HTTP port for the status API')
    parser.add_argument('--log-level', type=str, help='Logging level')
    parser.add_argument('--log-file', type=str, help='Also write logs to this file')
    args = parser.parse_args()

    server_config = (
        CoordinatorConfig.from_json_file(args.config) if args.config else CoordinatorConfig()
    )
    if args.listen_port is not None:
        server_config.listen_port = args.listen_port
    if args.broadcast:
        server_config.broadcast_addresses = args.broadcast
    if args.api_port is not None:
        server_config.api_port = args.api_port
    if args.log_level:
        server_config.log_level = args.log_level
    if args.log_file:
        server_config.log_file = args.log_file
    # Re-run validation and address parsing after overrides
    server_config = CoordinatorConfig.from_dict(server_config.to_dict())

    run_server(server_config)


if __name__ == "__main__":
    main()
