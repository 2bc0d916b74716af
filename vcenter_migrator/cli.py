"""Command line entry point for vCenter Migrator."""

import argparse
import asyncio
import os
import signal
import sys
import tempfile
from pathlib import Path

from dotenv import load_dotenv

from .app import MigratorApp
from .core.config_loader import DEFAULT_CONFIG_FILE, MigratorConfig, load_config_async
from .core.events import Event, EventLevel
from .core.exceptions import ConfigurationError, VCenterMigratorError
from .core.logging_config import get_logger, setup_logging
from .core.results import Err
from .models.enums import ConnectionSide, RunState


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="vcenter-migrator", description="Migrate vCenter configuration between two endpoints"
    )
    parser.add_argument(
        "--config",
        default=os.getenv("VCMIGRATOR_CONFIG", DEFAULT_CONFIG_FILE),
        help="Configuration file path",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Print every activity event")
    subparsers = parser.add_subparsers(dest="command", required=True)

    inventory = subparsers.add_parser("inventory", help="Enumerate one side's inventory")
    inventory.add_argument(
        "--side", choices=[s.value for s in ConnectionSide], default=ConnectionSide.SOURCE.value
    )

    migrate = subparsers.add_parser("migrate", help="Run a migration workflow")
    migrate.add_argument("workflow", help="Workflow name (see 'workflows')")
    migrate.add_argument(
        "--select",
        action="append",
        metavar="NAME",
        help="Only process this item name or id (repeatable)",
    )
    migrate.add_argument(
        "--validate-only", action="store_true", help="Validate without changing the target"
    )
    migrate.add_argument("--target-cluster", help="Destination cluster for host migration")
    migrate.add_argument("--backup-dir", help="Directory for host configuration backups")

    subparsers.add_parser("workflows", help="List available workflows")

    history = subparsers.add_parser("history", help="Show recorded workflow runs")
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--run-id", help="Show the items of one run")

    subparsers.add_parser("doctor", help="Check PowerShell, PowerCLI and scripts")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    logger = get_logger()

    try:
        exit_code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = 130
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        exit_code = 2
    except VCenterMigratorError as e:
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


def _setup_logging_system(args: argparse.Namespace, config: MigratorConfig) -> None:
    if config.log_dir:
        log_dir = Path(config.log_dir).expanduser()
    else:
        log_dir = Path(tempfile.gettempdir()) / "vcenter-migrator-logs"
    try:
        max_file_size_mb = int(os.getenv("LOG_FILE_SIZE_MB", "10"))
    except ValueError:
        max_file_size_mb = 10
    setup_logging(log_dir=log_dir, log_level=args.log_level, max_file_size_mb=max_file_size_mb)


async def _run(args: argparse.Namespace) -> int:
    config = await load_config_async(args.config if Path(args.config).exists() else None)
    config.log_level = args.log_level
    _setup_logging_system(args, config)

    async with MigratorApp(config) as app:
        app.events.subscribe(_event_printer(args.verbose))
        if args.command == "workflows":
            return _list_workflows(app)
        if args.command == "history":
            return await _show_history(app, args)
        if args.command == "doctor":
            return await _doctor(app)
        if args.command == "inventory":
            return await _inventory(app, ConnectionSide(args.side))
        if args.command == "migrate":
            return await _migrate(app, config, args)
    return 1


def _event_printer(verbose: bool):
    def _print(event: Event) -> None:
        if verbose or event.level in (EventLevel.WARNING, EventLevel.ERROR) or event.phase == "workflow":
            print(event.format())

    return _print


def _list_workflows(app: MigratorApp) -> int:
    for name in app.catalog.names():
        workflow = app.catalog.get(name)
        print(f"{name:<22} {workflow.description}")
    return 0


async def _connect(app: MigratorApp, sides: tuple[ConnectionSide, ...]) -> bool:
    results = await app.connect_profiles(sides)
    ok = True
    for side, result in results.items():
        if isinstance(result, Err):
            print(f"{side.value}: {result.error}", file=sys.stderr)
            ok = False
        else:
            print(f"{side.value}: connected to {result.value.server_address}")
    return ok


async def _inventory(app: MigratorApp, side: ConnectionSide) -> int:
    if not await _connect(app, (side,)):
        return 1
    result = await app.inventory.refresh(side)
    if isinstance(result, Err):
        print(f"Inventory failed: {result.error}", file=sys.stderr)
        return 1
    snapshot = result.value
    stats = snapshot.statistics()
    print(f"{side.value} inventory of {snapshot.server_address} (version {snapshot.server_version})")
    for label, value in (
        ("Datacenters", stats.datacenter_count),
        ("Clusters", stats.cluster_count),
        ("Hosts", stats.host_count),
        ("Virtual machines", stats.virtual_machine_count),
        ("Datastores", stats.datastore_count),
        ("Resource pools", stats.resource_pool_count),
        ("Folders", stats.folder_count),
        ("Tags", stats.tag_count),
        ("Roles", stats.role_count),
        ("Permissions", stats.permission_count),
    ):
        print(f"  {label:<18} {value}")
    print(f"  Datastore usage    {stats.datastore_utilization_percent:.1f}%")
    for cluster in snapshot.clusters:
        hosts = snapshot.hosts_in_cluster(cluster.name)
        vms = snapshot.vms_in_cluster(cluster.name)
        print(f"  Cluster {cluster.name}: {len(hosts)} host(s), {len(vms)} VM(s)")
    return 0


async def _migrate(app: MigratorApp, config: MigratorConfig, args: argparse.Namespace) -> int:
    workflow = app.catalog.get(args.workflow)
    if not await _connect(app, workflow.required_sides):
        return 1

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        # Not supported on this platform; Ctrl+C aborts instead of cancelling
        pass

    options = {
        "target_cluster": args.target_cluster,
        "backup_dir": args.backup_dir or config.backup_dir,
    }

    def _progress(completed: int, total: int) -> None:
        print(f"  [{completed}/{total}]", end="\r", flush=True)

    run = await app.runner.run(
        workflow.name,
        selection=args.select,
        validate_only=args.validate_only,
        options=options,
        cancel_event=cancel_event,
        progress=_progress,
    )

    print(f"\n{run.workflow}: {run.state.value} - {run.summary()}")
    if run.error:
        print(f"  {run.error}", file=sys.stderr)
    for item in run.items:
        detail = item.last_error or item.message
        print(f"  {item.status.value:<10} {item.name}{f'  ({detail})' if detail else ''}")
    if run.error or run.failure_count or run.state is RunState.ABORTED:
        return 1
    return 0


async def _show_history(app: MigratorApp, args: argparse.Namespace) -> int:
    if args.run_id:
        record = await app.history.get_run(args.run_id)
        if record is None:
            print(f"No run with id {args.run_id}", file=sys.stderr)
            return 1
        print(f"{record.workflow} {record.state} {record.started_at}: {record.summary}")
        for item in record.items:
            print(f"  {item['status']:<10} {item['name']}")
        return 0

    for record in await app.history.list_runs(limit=args.limit):
        mode = " (validate)" if record.validate_only else ""
        print(f"{record.run_id[:8]}  {record.started_at[:19]}  {record.workflow}{mode}: {record.summary}")
    return 0


async def _doctor(app: MigratorApp) -> int:
    try:
        report = await app.check_prerequisites()
    except (VCenterMigratorError, asyncio.TimeoutError) as e:
        print(f"Prerequisite check failed: {e}", file=sys.stderr)
        return 1
    for key, value in report.items():
        print(f"{key:<20} {value}")
    if report["transport"] == "local" and (
        not report["powershell"] or not report["powercli_installed"] or report["missing_scripts"]
    ):
        return 1
    return 0


if __name__ == "__main__":
    main()
