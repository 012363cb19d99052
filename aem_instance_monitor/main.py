#!/usr/bin/env python3
"""
AEM Instance Monitor - Main Application Entry Point
Command line interface for status detection, health checks and lifecycle control.
"""

import asyncio
import json
import signal
import sys
import argparse
import logging
from typing import Dict, Any, List, Optional

import structlog

from . import __version__
from .config.config_manager import ConfigManager
from .core.lifecycle import LifecycleController
from .core.models import Instance, InstanceType, InstanceMonitorError
from .core.status_detector import StatusDetector
from .clients.health_client import AuthenticatedHealthClient
from .probes.http_readiness import HttpReadinessProbe
from .probes.port_probe import PortProbe
from .probes.process_inspector import select_process_inspector
from .store.credential_store import CredentialStore, CredentialResolver
from .store.instance_store import JsonInstanceStore

logger = structlog.get_logger()

SHARED_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging. Logs go to stderr so command output on
    stdout stays machine-readable. DEBUG switches to the console renderer.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    renderer = structlog.dev.ConsoleRenderer() if level == logging.DEBUG else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=SHARED_PROCESSORS + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class InstanceMonitor:
    """
    Main application class.
    Builds the probes, stores and controller from configuration.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_manager = ConfigManager(config_path)
        self.instance_store: Optional[JsonInstanceStore] = None
        self.credential_store: Optional[CredentialStore] = None
        self.controller: Optional[LifecycleController] = None

    async def initialize(self) -> bool:
        if not await self.config_manager.load_config():
            return False

        section = self.config_manager.get_section
        data_dir = self.config_manager.data_dir

        self.instance_store = JsonInstanceStore(data_dir)
        self.credential_store = CredentialStore(data_dir)

        process_inspector = select_process_inspector()
        detector = StatusDetector(
            port_probe=PortProbe(timeout_ms=section('detection.port_timeout_ms')),
            process_inspector=process_inspector,
            http_probe=HttpReadinessProbe(
                timeout_ms=section('detection.http_timeout_ms'),
                login_path=section('detection.login_path'),
            ),
            max_concurrency=section('detection.max_concurrency'),
        )
        self.controller = LifecycleController(
            store=self.instance_store,
            detector=detector,
            health_client=AuthenticatedHealthClient(timeout_ms=section('health.request_timeout_ms')),
            credentials=CredentialResolver(
                self.credential_store,
                default_username=section('health.default_username'),
                default_password=section('health.default_password'),
            ),
            process_inspector=process_inspector,
            kill_grace_period=float(section('lifecycle.kill_grace_period_s')),
        )

        logger.debug("instance_monitor_initialized", data_dir=str(data_dir))
        return True

    async def watch(self, interval: float, stop_event: asyncio.Event) -> None:
        """Poll all instances until stop_event is set, reporting status changes."""
        previous: Dict[str, str] = {}
        while not stop_event.is_set():
            for result in await self.controller.detect_all():
                status = result.status.value
                if previous.get(result.instance_id) != status:
                    logger.info("instance_status_changed",
                                instance_id=result.instance_id,
                                previous=previous.get(result.instance_id),
                                status=status,
                                error=result.error)
                    emit(result.to_dict(), compact=True)
                previous[result.instance_id] = status

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass


def emit(payload: Any, compact: bool = False) -> None:
    print(json.dumps(payload, indent=None if compact else 2), flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aem-instance-monitor",
        description="Status detection and lifecycle control for local AEM instances",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s status
  %(prog)s status author-4502
  %(prog)s health author-4502 --log-level DEBUG
  %(prog)s --config ~/aem/monitor.yaml watch
        """
    )

    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument(
        '--log-level', '-l',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Override the configured logging level'
    )
    parser.add_argument('--version', action='version',
                        version=f'AEM Instance Monitor v{__version__}')

    commands = parser.add_subparsers(dest='command', required=True)

    status_cmd = commands.add_parser('status', help='Detect status of one or all instances')
    status_cmd.add_argument('instance_id', nargs='?')

    for name, help_text in (('health', 'Run an authenticated health check'),
                            ('stop', 'Stop an instance'),
                            ('urls', 'Show console URLs'),
                            ('remove', 'Delete an instance record')):
        command = commands.add_parser(name, help=help_text)
        command.add_argument('instance_id')

    commands.add_parser('list', help='List configured instances')
    commands.add_parser('watch', help='Poll all instances and report status changes')
    commands.add_parser('serve', help='Run the REST API server')

    add_cmd = commands.add_parser('add', help='Register an instance')
    add_cmd.add_argument('--id', default='')
    add_cmd.add_argument('--name', required=True)
    add_cmd.add_argument('--host', default='localhost')
    add_cmd.add_argument('--port', type=int, required=True)
    add_cmd.add_argument('--type', dest='instance_type', default='author',
                         choices=[t.value for t in InstanceType])
    add_cmd.add_argument('--path', default='')

    creds_cmd = commands.add_parser('set-credentials', help='Store console credentials')
    creds_cmd.add_argument('instance_id')
    creds_cmd.add_argument('--username', required=True)
    creds_cmd.add_argument('--password', required=True)

    return parser


async def run_command(app: InstanceMonitor, args: argparse.Namespace) -> int:
    controller = app.controller

    if args.command == 'status':
        if args.instance_id:
            emit((await controller.detect_status(args.instance_id)).to_dict())
        else:
            emit([result.to_dict() for result in await controller.detect_all()])
    elif args.command == 'health':
        emit((await controller.check_health(args.instance_id)).to_dict())
    elif args.command == 'stop':
        emit({"instance_id": args.instance_id, "stopped": await controller.stop(args.instance_id)})
    elif args.command == 'urls':
        emit(await controller.instance_urls(args.instance_id))
    elif args.command == 'list':
        emit([instance.to_dict() for instance in await app.instance_store.list()])
    elif args.command == 'add':
        instance = Instance(
            id=args.id,
            name=args.name,
            instance_type=InstanceType(args.instance_type),
            host=args.host,
            port=args.port,
            path=args.path,
        )
        emit((await app.instance_store.add(instance)).to_dict())
    elif args.command == 'remove':
        await app.instance_store.delete(args.instance_id)
        await app.credential_store.delete(args.instance_id)
        emit({"instance_id": args.instance_id, "removed": True})
    elif args.command == 'set-credentials':
        await app.instance_store.get(args.instance_id)
        await app.credential_store.save(args.instance_id, args.username, args.password)
        emit({"instance_id": args.instance_id, "stored": True})
    elif args.command in ('watch', 'serve'):
        await run_service(app, args.command)
    return 0


async def run_service(app: InstanceMonitor, command: str) -> None:
    """Run a long-lived command until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in [signal.SIGTERM, signal.SIGINT]:
        loop.add_signal_handler(sig, signal_handler)

    if command == 'watch':
        interval = app.config_manager.get_section('monitoring.poll_interval')
        logger.info("watch_started", poll_interval=interval)
        await app.watch(interval, stop_event)
        return

    from .api.rest_server import RestAPIServer

    server = RestAPIServer(
        controller=app.controller,
        credential_store=app.credential_store,
        config=app.config_manager.get_section('api', {}),
    )
    serve_task = asyncio.create_task(server.start())
    stop_task = asyncio.create_task(stop_event.wait())
    await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    await server.stop()
    stop_task.cancel()
    await serve_task


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    configure_logging(args.log_level or "INFO")
    app = InstanceMonitor(config_path=args.config)
    if not await app.initialize():
        logger.error("configuration_invalid", config_path=str(app.config_manager.config_path))
        return 1

    if args.log_level is None:
        configured = str(app.config_manager.get_section('global.log_level', 'INFO')).upper()
        logging.getLogger().setLevel(getattr(logging, configured, logging.INFO))

    try:
        return await run_command(app, args)
    except InstanceMonitorError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        emit({"error": str(e)})
        return 1
    except ValueError as e:
        logger.error("invalid_arguments", command=args.command, error=str(e))
        emit({"error": str(e)})
        return 1


def cli_main():
    """CLI entry point that handles async main function."""
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    cli_main()
