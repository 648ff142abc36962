"""
Service orchestrator for AggNet on localhost.

Starts and manages every role with unified, color-coded output:
- Coordinator (parameter server + status API)
- Aggregating relay
- N workers of one job, one part each

Usage:
    # Start all services with console output
    python scripts/start_services.py

    # Also write to log files
    python scripts/start_services.py --logs-dir logs

    # Custom number of workers and rounds
    python scripts/start_services.py --workers 4 --rounds 20
"""

import asyncio
import argparse
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional


# ANSI color codes
class Colors:
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    MAGENTA = '\033[95m'
    CYAN = '\033[96m'
    RED = '\033[91m'
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'


HOST = "127.0.0.1"
COORDINATOR_PORT = 9102
RELAY_PORT = 9101
WORKER_BASE_PORT = 9110


class ServiceManager:
    """Runs role processes and multiplexes their output."""

    def __init__(self, logs_dir: Optional[Path] = None):
        self.processes: Dict[str, asyncio.subprocess.Process] = {}
        self.logs_dir = logs_dir
        self.shutdown_event = asyncio.Event()

        if self.logs_dir:
            self.logs_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _timestamp() -> str:
        return datetime.now().strftime("%H:%M:%S.%f")[:-3]

    async def _pump(self, service: str, stream, color: str, log_path: Optional[Path]):
        log_file = open(log_path, 'a') if log_path else None
        try:
            async for raw in stream:
                line = raw.decode('utf-8', errors='replace').rstrip('\n')
                print(
                    f"{Colors.DIM}{self._timestamp()}{Colors.RESET} "
                    f"{color}{service:12}{Colors.RESET} │ {line}",
                    flush=True
                )
                if log_file:
                    log_file.write(f"{self._timestamp()} {line}\n")
                    log_file.flush()
        finally:
            if log_file:
                log_file.close()

    async def run_service(self, service: str, command: List[str], color: str, cwd: Path) -> int:
        """Start a process, stream its output and return its exit code."""
        print(f"{Colors.BOLD}{color}▶ Starting {service}...{Colors.RESET}")
        log_path = self.logs_dir / f"{service}.log" if self.logs_dir else None

        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=cwd
        )
        self.processes[service] = process

        await self._pump(service, process.stdout, color, log_path)
        return_code = await process.wait()

        if return_code != 0 and not self.shutdown_event.is_set():
            print(f"{Colors.BOLD}{Colors.RED}✗ {service} exited with code {return_code}{Colors.RESET}")
        else:
            print(f"{Colors.BOLD}{color}■ {service} stopped{Colors.RESET}")
        return return_code

    async def stop_all(self):
        """Terminate every running process, killing stragglers after 5s."""
        if self.shutdown_event.is_set():
            return
        print(f"\n{Colors.BOLD}{Colors.YELLOW}⚠ Shutting down all services...{Colors.RESET}")
        self.shutdown_event.set()

        running = [p for p in self.processes.values() if p.returncode is None]
        for process in running:
            try:
                process.terminate()
            except ProcessLookupError:
                pass

        try:
            await asyncio.wait_for(
                asyncio.gather(*[p.wait() for p in running], return_exceptions=True),
                timeout=5.0
            )
        except asyncio.TimeoutError:
            for process in running:
                if process.returncode is None:
                    process.kill()

        print(f"{Colors.BOLD}{Colors.GREEN}✓ All services stopped{Colors.RESET}")


def build_commands(args) -> List[tuple]:
    """(name, command, color) for every role."""
    python = sys.executable
    worker_addresses = [f"{HOST}:{WORKER_BASE_PORT + i}" for i in range(args.workers)]

    coordinator = [
        python, "-m", "coordinator.server",
        "--listen-port", str(COORDINATOR_PORT),
        "--broadcast", f"{HOST}:{RELAY_PORT}",
        "--api-port", str(args.api_port),
    ]

    relay = [
        python, "-m", "relay.service",
        "--listen-port", str(RELAY_PORT),
        "--max-parts", str(args.workers),
        "--coordinator", f"{HOST}:{COORDINATOR_PORT}",
    ]
    for address in worker_addresses:
        relay += ["--broadcast", address]

    commands = [
        ("coordinator", coordinator, Colors.BLUE),
        ("relay", relay, Colors.MAGENTA),
    ]

    worker_colors = [Colors.GREEN, Colors.YELLOW, Colors.CYAN]
    for i in range(args.workers):
        worker = [
            python, "-m", "worker.client",
            "--job-id", str(args.job_id),
            "--part-id", str(i),
            "--max-rounds", str(args.rounds),
            "--interval", str(args.interval),
            "--listen-port", str(WORKER_BASE_PORT + i),
            "--relay", f"{HOST}:{RELAY_PORT}",
            "--completion-policy", args.completion_policy,
        ]
        commands.append((f"worker-{i}", worker, worker_colors[i % len(worker_colors)]))

    return commands


async def main():
    parser = argparse.ArgumentParser(
        description="Start all AggNet roles on localhost with unified output"
    )
    parser.add_argument('--logs-dir', type=Path, default=None, help='Directory to write log files')
    parser.add_argument('--workers', type=int, default=3, help='Number of workers (default: 3)')
    parser.add_argument('--job-id', type=int, default=1, help='Job identifier (default: 1)')
    parser.add_argument('--rounds', type=int, default=10, help='Rounds per worker (default: 10)')
    parser.add_argument('--interval', type=float, default=0.5, help='Worker pacing interval')
    parser.add_argument(
        '--completion-policy',
        type=str,
        default='observed',
        choices=['observed', 'tracking']
    )
    parser.add_argument('--api-port', type=int, default=8000, help='Coordinator API port')
    args = parser.parse_args()

    if args.workers < 1:
        print(f"{Colors.RED}Error: Must have at least 1 worker{Colors.RESET}")
        return 1

    manager = ServiceManager(logs_dir=args.logs_dir)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: loop.create_task(manager.stop_all()))

    print(f"{Colors.BOLD}{Colors.CYAN}{'='*80}{Colors.RESET}")
    print(f"{Colors.BOLD}{Colors.CYAN}AggNet Service Orchestrator{Colors.RESET}")
    print(f"{Colors.BOLD}{Colors.CYAN}{'='*80}{Colors.RESET}")
    print(f"Workers: {args.workers}  Rounds: {args.rounds}  Policy: {args.completion_policy}")
    print()

    project_root = Path(__file__).parent.parent
    commands = build_commands(args)

    try:
        # Receivers first so the first contributions are not lost
        services = []
        for name, command, color in commands[:2]:
            services.append(asyncio.create_task(
                manager.run_service(name, command, color, project_root)
            ))
        await asyncio.sleep(1.0)
        for name, command, color in commands[2:]:
            services.append(asyncio.create_task(
                manager.run_service(name, command, color, project_root)
            ))

        await asyncio.gather(*services, return_exceptions=True)
    finally:
        await manager.stop_all()

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
